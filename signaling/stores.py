"""
Collaborator interfaces for session and device storage.

The orchestrator only ever talks to these protocols, so the Firebase-backed
implementations in ``firebase_service`` and the in-memory ones below are
interchangeable. In-memory stores keep data for the life of the process and
are meant for tests and local development.
"""
import copy
import logging
import threading
from typing import Any, Dict, List, Optional, Protocol

from .devices import DeviceRegistration, parse_registrations

logger = logging.getLogger("signaling")


class SessionStore(Protocol):
    """Key-by-callId access to session records."""

    def get(self, call_id: str) -> Optional[Dict[str, Any]]:
        """Return the record for ``call_id`` or ``None`` if absent."""
        ...

    def set(self, call_id: str, record: Dict[str, Any]) -> None:
        """Write a whole record."""
        ...

    def update(self, call_id: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into an existing record."""
        ...

    def delete(self, call_id: str) -> None:
        ...

    def is_available(self) -> bool:
        ...


class DeviceRegistry(Protocol):
    def get(self, user_id: str) -> Optional[List[DeviceRegistration]]:
        """Registrations for ``user_id`` in registry order, ``None`` if unknown."""
        ...


class InMemorySessionStore:
    """Thread-safe dict-backed session store."""

    def __init__(self, records: Optional[Dict[str, Dict[str, Any]]] = None):
        self._records = copy.deepcopy(records) if records else {}
        self._lock = threading.Lock()

    def get(self, call_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(call_id)
            return copy.deepcopy(record) if record is not None else None

    def set(self, call_id: str, record: Dict[str, Any]) -> None:
        with self._lock:
            self._records[call_id] = copy.deepcopy(record)

    def update(self, call_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            record = self._records.setdefault(call_id, {})
            record.update(copy.deepcopy(fields))

    def delete(self, call_id: str) -> None:
        with self._lock:
            self._records.pop(call_id, None)

    def is_available(self) -> bool:
        return True


class InMemoryDeviceRegistry:
    """Device registrations kept as ``{userId: {deviceId: {"fcmToken": ...}}}``."""

    def __init__(self, data: Optional[Dict[str, Dict[str, Any]]] = None):
        self._data = copy.deepcopy(data) if data else {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[List[DeviceRegistration]]:
        with self._lock:
            data = copy.deepcopy(self._data.get(user_id))
        return parse_registrations(user_id, data)
