"""
Device registrations and the callee device selection policy.

Registry contract: ``get(user_id)`` returns the user's registrations in
registry order (for the Realtime Database, key order of
``calls/{userId}/{deviceId}``) or ``None`` when the user has none at all.
The first registration that can be rung is rung first; the rest are kept as
fallbacks for tokens the transport rejects as stale.

A registration carries an ``fcmToken`` and, for iOS devices, optionally a
``voipToken``. iOS devices with a VoIP token are rung through APNs when a
VoIP transport is configured; everything else goes through FCM.
"""
from dataclasses import dataclass
from typing import Any, List, Optional

from .constants import PLATFORM_IOS


def _present(token: Optional[str]) -> bool:
    return isinstance(token, str) and bool(token.strip())


def preview_token(token: Optional[str]) -> str:
    token = token or ""
    return f"{token[:20]}..." if len(token) > 20 else token


@dataclass(frozen=True)
class DeviceRegistration:
    user_id: str
    device_id: str
    push_token: Optional[str] = None
    platform: Optional[str] = None
    voip_token: Optional[str] = None

    def uses_voip(self, voip_enabled: bool = False) -> bool:
        return voip_enabled and self.platform == PLATFORM_IOS and _present(self.voip_token)

    def is_reachable(self, voip_enabled: bool = False) -> bool:
        return _present(self.push_token) or self.uses_voip(voip_enabled)


def parse_registrations(user_id: str, data: Any) -> Optional[List[DeviceRegistration]]:
    """
    Turn the raw ``{deviceId: {"fcmToken": ..., "voipToken": ...}}`` mapping
    into registrations.

    Entries that are not objects are skipped; entries without a token are
    kept so callers can tell "registered but no token" from "not registered".
    """
    if data is None:
        return None
    if not isinstance(data, dict):
        return []

    registrations = []
    for device_id, entry in data.items():
        if not isinstance(entry, dict):
            continue
        registrations.append(DeviceRegistration(
            user_id=user_id,
            device_id=str(device_id),
            push_token=entry.get("fcmToken"),
            platform=entry.get("platform"),
            voip_token=entry.get("voipToken"),
        ))
    return registrations


def resolve_push_targets(
    registrations: Optional[List[DeviceRegistration]],
    voip_enabled: bool = False,
) -> List[DeviceRegistration]:
    """Registrations worth ringing, in order. First match wins."""
    if not registrations:
        return []
    return [
        registration for registration in registrations
        if registration.is_reachable(voip_enabled)
    ]
