from .health import health
from .provision import call_provision
from .calls import (
    call_initiate,
    call_accept,
    call_end,
    call_delete,
    call_status,
)

__all__ = [
    "health",
    "call_provision",
    "call_initiate",
    "call_accept",
    "call_end",
    "call_delete",
    "call_status",
]
