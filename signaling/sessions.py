"""
Call session model and its state machine.

Session records live in the store as plain dicts:

    calls_sessions/{callId}:
    {
        "channel": "ch1",            # set at provisioning, never rewritten
        "token": "tok1",             # set at provisioning, never rewritten
        "status": "ringing",         # absent on freshly provisioned records
        "callerId": "u1",
        "calleeId": "u2",
        "lastRingingAttempt": 1700000000000,
        "acceptedBy": "u2", "acceptedAt": ...,
        "endedBy": "u2", "endedRole": "callee", "endedAt": ...,
        "statusHistory": [{"status": "ringing", "actorId": "u1", "at": ...}]
    }

Transitions never touch ``channel`` or ``token``; they return the partial
update to write and leave the write itself to the caller.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidCallState

logger = logging.getLogger("signaling")


class CallStatus(str, Enum):
    CREATED = "created"
    RINGING = "ringing"
    ACCEPTED = "accepted"
    ENDED = "ended"

    @classmethod
    def parse(cls, value) -> "CallStatus":
        """Read a stored status; records without one are freshly provisioned."""
        if value is None or value == "":
            return cls.CREATED
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.warning(f"Unknown stored call status {value!r}, treating as created")
            return cls.CREATED


ALLOWED_TRANSITIONS = {
    CallStatus.CREATED: frozenset({CallStatus.RINGING, CallStatus.ACCEPTED, CallStatus.ENDED}),
    CallStatus.RINGING: frozenset({CallStatus.RINGING, CallStatus.ACCEPTED, CallStatus.ENDED}),
    CallStatus.ACCEPTED: frozenset({CallStatus.ENDED}),
    CallStatus.ENDED: frozenset(),
}

IMMUTABLE_FIELDS = ("channel", "token")


@dataclass(frozen=True)
class StatusChange:
    status: CallStatus
    actor_id: Optional[str]
    at: int

    def to_record(self) -> Dict[str, Any]:
        record = {"status": self.status.value, "at": self.at}
        if self.actor_id:
            record["actorId"] = self.actor_id
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "StatusChange":
        return cls(
            status=CallStatus.parse(record.get("status")),
            actor_id=record.get("actorId"),
            at=record.get("at") or 0,
        )


@dataclass
class CallSession:
    call_id: str
    channel_name: Optional[str]
    media_token: Optional[str] = field(default=None, repr=False)
    status: CallStatus = CallStatus.CREATED
    caller_id: Optional[str] = None
    callee_id: Optional[str] = None
    status_history: List[StatusChange] = field(default_factory=list)
    record: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_record(cls, call_id: str, record: Dict[str, Any]) -> "CallSession":
        history = record.get("statusHistory") or []
        # The Realtime Database hands sparse arrays back as index-keyed dicts
        if isinstance(history, dict):
            history = [history[key] for key in sorted(history, key=_index_key)]
        return cls(
            call_id=call_id,
            channel_name=record.get("channel") or None,
            media_token=record.get("token") or None,
            status=CallStatus.parse(record.get("status")),
            caller_id=record.get("callerId"),
            callee_id=record.get("calleeId"),
            status_history=[
                StatusChange.from_record(item) for item in history if isinstance(item, dict)
            ],
            record=dict(record),
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.channel_name) and bool(self.media_token)

    @property
    def is_terminal(self) -> bool:
        return self.status is CallStatus.ENDED

    def can_transition(self, target: CallStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition(
        self,
        target: CallStatus,
        at: int,
        actor_id: Optional[str] = None,
        record_history: bool = True,
        **fields: Any,
    ) -> Dict[str, Any]:
        """
        Move the session to ``target`` and return the partial record to write.

        ``fields`` are extra audit fields for this transition (``acceptedBy``,
        ``endedRole`` ...). ``None`` values are dropped so an update never
        clears a field it has nothing to say about.

        Raises:
            InvalidCallState if the move is not allowed from the current status
        """
        if not self.can_transition(target):
            raise InvalidCallState(
                f"Cannot move call from {self.status.value} to {target.value}",
                currentStatus=self.status.value,
            )

        changes = {"status": target.value}
        for key, value in fields.items():
            if key in IMMUTABLE_FIELDS:
                raise ValueError(f"{key} is immutable once provisioned")
            if value is not None:
                changes[key] = value

        if record_history:
            self.status_history.append(StatusChange(target, actor_id, at))
            changes["statusHistory"] = [item.to_record() for item in self.status_history]

        self.status = target
        self.record.update(changes)
        return changes

    def to_public_dict(self) -> Dict[str, Any]:
        """Session view safe to return to clients: everything but the media token."""
        record = self.record
        return {
            "callId": self.call_id,
            "channelName": self.channel_name,
            "status": self.status.value,
            "callerId": self.caller_id,
            "calleeId": self.callee_id,
            "createdAt": record.get("createdAt"),
            "lastRingingAttempt": record.get("lastRingingAttempt"),
            "acceptedBy": record.get("acceptedBy"),
            "acceptedAt": record.get("acceptedAt"),
            "endedBy": record.get("endedBy"),
            "endedRole": record.get("endedRole"),
            "endedAt": record.get("endedAt"),
            "statusHistory": [item.to_record() for item in self.status_history],
        }


def _index_key(key):
    try:
        return int(key)
    except (TypeError, ValueError):
        return 0
