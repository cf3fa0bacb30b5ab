import asyncio
import time
import uuid

from .constants import DEFAULT_TOKEN_EXPIRE_SECONDS, MAX_TOKEN_EXPIRE_SECONDS, ROLE_CALLEE, ROLE_CALLER

SECRET_FIELDS = frozenset({"token", "mediaToken", "media_token", "agoraToken"})


def parse_participant_role(value):
    """Normalize an End role. Returns None for unknown values."""
    if isinstance(value, str):
        value = value.strip().lower()
        if value in {ROLE_CALLER, ROLE_CALLEE}:
            return value
    return None


def clamp_expire(expire):
    try:
        expire = int(expire)
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_EXPIRE_SECONDS
    if expire <= 0:
        return DEFAULT_TOKEN_EXPIRE_SECONDS
    return min(expire, MAX_TOKEN_EXPIRE_SECONDS)


def run_async(coro):
    """Helper to run async code in sync Django views."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = None
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def generate_call_id() -> str:
    return str(uuid.uuid4())


def generate_channel_name(call_id: str) -> str:
    """Use callId as the channel name to keep it short and stable."""
    return call_id


def now_ms() -> int:
    """Epoch milliseconds, the timestamp format stored on session records."""
    return int(time.time() * 1000)


def redact(data):
    """Copy of a request body safe to log."""
    if not isinstance(data, dict):
        return data
    return {
        key: ("***" if key in SECRET_FIELDS and value else value)
        for key, value in data.items()
    }
