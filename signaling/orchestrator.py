"""
Call orchestration - Initiate, Accept and End against a call session.

Each operation is a short, stateless transaction:

    validate -> fetch session -> (ring callee) -> write status

Nothing is locked between the fetch and the write. Two requests racing on the
same callId both act on what they read; whichever writes status last wins.

Initiate performs two side effects with independent outcomes: the ring and
the Ringing status write. The ring decides the result. The status write is
best-effort: once the callee's phone is ringing, a failed write is logged
and reported as ``status_recorded=False`` instead of failing the call.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .constants import ROLE_CALLEE, ROLE_CALLER
from .devices import DeviceRegistration, preview_token, resolve_push_targets
from .errors import (
    CallNotRingable,
    DeviceNotFound,
    DeviceUnreachable,
    DispatchError,
    InvalidFieldsError,
    InvalidRoleError,
    MissingFieldsError,
    SessionCredentialsMissing,
    SessionNotFound,
    SessionStoreError,
)
from .push_service import NotificationDispatcher, PushResult, build_ring_notification
from .sessions import CallSession, CallStatus
from .stores import DeviceRegistry, SessionStore
from .utils import now_ms, parse_participant_role, run_async

logger = logging.getLogger("signaling")


@dataclass(frozen=True)
class CallCredentials:
    channel_name: str
    media_token: str


@dataclass(frozen=True)
class InitiateOutcome:
    credentials: CallCredentials
    dispatch: PushResult
    device_id: str
    status_recorded: bool


@dataclass(frozen=True)
class AcceptOutcome:
    credentials: CallCredentials
    status: CallStatus
    status_changed: bool


@dataclass(frozen=True)
class EndOutcome:
    call_id: str
    already_ended: bool


def require_fields(**fields) -> None:
    missing = [
        name for name, value in fields.items()
        if not isinstance(value, str) or not value.strip()
    ]
    if missing:
        raise MissingFieldsError(required=list(fields), missing=missing)


def check_optional_fields(**fields) -> None:
    """Fields that may be omitted must still be strings when they are sent."""
    invalid = [
        name for name, value in fields.items()
        if value is not None and not isinstance(value, str)
    ]
    if invalid:
        raise InvalidFieldsError(invalid)


class CallOrchestrator:
    """
    Coordinates the call handshake between caller and callee.

    Collaborators are injected so the store and the push transport can be
    swapped for in-memory fakes. ``dispatcher`` rings every device by its
    FCM token; ``voip_dispatcher``, when given, rings iOS devices that
    registered a VoIP token.
    """

    def __init__(
        self,
        sessions: SessionStore,
        devices: DeviceRegistry,
        dispatcher: NotificationDispatcher,
        record_history: bool = True,
        ring_sound: str = "incoming_call",
        ring_ttl: int = 60,
        apns_topic: Optional[str] = None,
        voip_dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.sessions = sessions
        self.devices = devices
        self.dispatcher = dispatcher
        self.record_history = record_history
        self.ring_sound = ring_sound
        self.ring_ttl = ring_ttl
        self.apns_topic = apns_topic
        self.voip_dispatcher = voip_dispatcher
        self._clock = clock

    # =========================================================================
    # Session access
    # =========================================================================

    def fetch_session(self, call_id: str, require_credentials: bool = True) -> CallSession:
        record = self.sessions.get(call_id)
        if record is None:
            raise SessionNotFound(f"Call session not found for callId: {call_id}")

        session = CallSession.from_record(call_id, record)
        if require_credentials and not session.has_credentials:
            logger.error(f"[ORCHESTRATOR] Session {call_id} is missing channel or token")
            raise SessionCredentialsMissing(f"Channel or token not found for callId: {call_id}")
        return session

    @staticmethod
    def _credentials(session: CallSession) -> CallCredentials:
        return CallCredentials(channel_name=session.channel_name, media_token=session.media_token)

    # =========================================================================
    # Initiate
    # =========================================================================

    def initiate(self, call_id: str, caller_id: str, callee_id: str) -> InitiateOutcome:
        """
        Ring the callee and mark the session Ringing.

        Raises:
            MissingFieldsError if callId, callerId or calleeId is missing
            SessionNotFound / SessionCredentialsMissing if the session is unusable
            CallNotRingable if the call was already accepted or ended
            DeviceNotFound / DeviceUnreachable if no callee device takes the ring
            DispatchError if the push transport failed
            SessionStoreError if the session or device lookup failed
        """
        require_fields(callId=call_id, callerId=caller_id, calleeId=callee_id)

        session = self.fetch_session(call_id)
        if not session.can_transition(CallStatus.RINGING):
            raise CallNotRingable(
                f"Call {call_id} is {session.status.value} and can no longer ring",
                currentStatus=session.status.value,
            )

        targets = resolve_push_targets(
            self.devices.get(callee_id),
            voip_enabled=self.voip_dispatcher is not None,
        )
        if not targets:
            raise DeviceNotFound(f"No push token registered for calleeId: {callee_id}")

        notification = build_ring_notification(
            call_id=call_id,
            caller_id=caller_id,
            channel_name=session.channel_name,
            media_token=session.media_token,
            sound=self.ring_sound,
            ttl=self.ring_ttl,
            apns_topic=self.apns_topic,
        )

        device, result = self._ring(call_id, targets, notification)

        status_recorded = self._record_ringing(session, caller_id, callee_id)
        return InitiateOutcome(
            credentials=self._credentials(session),
            dispatch=result,
            device_id=device.device_id,
            status_recorded=status_recorded,
        )

    def _route(self, device: DeviceRegistration):
        if device.uses_voip(self.voip_dispatcher is not None):
            return self.voip_dispatcher, device.voip_token
        return self.dispatcher, device.push_token

    def _ring(self, call_id: str, targets: List[DeviceRegistration], notification):
        """Ring the first target that takes it. Only stale tokens move on to the next one."""
        for device in targets:
            dispatcher, token = self._route(device)
            logger.info(
                f"[ORCHESTRATOR] Ringing call {call_id} on device {device.device_id} "
                f"via {dispatcher.platform} ({preview_token(token)})"
            )
            result = run_async(dispatcher.send(token, notification))
            if result.success:
                return device, result
            if result.stale_token:
                logger.warning(
                    f"[ORCHESTRATOR] Stale push token for device {device.device_id} "
                    f"on call {call_id}: {result.error}"
                )
                continue
            raise DispatchError(
                f"Ring for callId {call_id} was not delivered",
                pushError=result.error_code,
            )

        raise DeviceUnreachable(f"Every push token for the callee of {call_id} was rejected")

    def _record_ringing(self, session: CallSession, caller_id: str, callee_id: str) -> bool:
        at = self._clock()
        changes = session.transition(
            CallStatus.RINGING,
            at=at,
            actor_id=caller_id,
            record_history=self.record_history,
            callerId=caller_id,
            calleeId=callee_id,
            lastRingingAttempt=at,
        )
        try:
            self.sessions.update(session.call_id, changes)
        except SessionStoreError as e:
            logger.warning(
                f"[ORCHESTRATOR] Ring delivered for call {session.call_id} "
                f"but ringing status was not recorded: {e}"
            )
            return False
        return True

    # =========================================================================
    # Accept
    # =========================================================================

    def accept(self, call_id: str, callee_id: Optional[str] = None) -> AcceptOutcome:
        """
        Hand the channel and token to the accepting party and mark the call Accepted.

        Accepting a call that was never seen ringing is fine. Accepting an
        accepted or ended call changes nothing but still returns the credentials.
        """
        require_fields(callId=call_id)
        check_optional_fields(calleeId=callee_id)

        session = self.fetch_session(call_id)
        if not session.can_transition(CallStatus.ACCEPTED):
            logger.info(f"[ORCHESTRATOR] Call {call_id} already {session.status.value}, accept is a no-op")
            return AcceptOutcome(self._credentials(session), session.status, status_changed=False)

        at = self._clock()
        changes = session.transition(
            CallStatus.ACCEPTED,
            at=at,
            actor_id=callee_id,
            record_history=self.record_history,
            acceptedBy=callee_id or None,
            acceptedAt=at,
        )
        self.sessions.update(call_id, changes)

        logger.info(f"[ORCHESTRATOR] Call {call_id} accepted by {callee_id}")
        return AcceptOutcome(self._credentials(session), session.status, status_changed=True)

    # =========================================================================
    # End
    # =========================================================================

    def end(self, call_id: str, user_id: Optional[str] = None, role: Optional[str] = None) -> EndOutcome:
        """
        Mark the call Ended. Idempotent: ending an ended call keeps the first
        endedBy/endedRole and writes nothing. The record is never deleted here.
        """
        require_fields(callId=call_id)
        check_optional_fields(userId=user_id, role=role)

        if role not in (None, ""):
            parsed_role = parse_participant_role(role)
            if parsed_role is None:
                raise InvalidRoleError()
            role = parsed_role
        else:
            role = None

        session = self.fetch_session(call_id, require_credentials=False)
        if session.is_terminal:
            logger.info(f"[ORCHESTRATOR] Call {call_id} already ended")
            return EndOutcome(call_id=call_id, already_ended=True)

        if role is None and user_id:
            if user_id == session.caller_id:
                role = ROLE_CALLER
            elif user_id == session.callee_id:
                role = ROLE_CALLEE

        at = self._clock()
        changes = session.transition(
            CallStatus.ENDED,
            at=at,
            actor_id=user_id,
            record_history=self.record_history,
            endedBy=user_id or None,
            endedRole=role,
            endedAt=at,
        )
        self.sessions.update(call_id, changes)

        logger.info(f"[ORCHESTRATOR] Call {call_id} ended by {user_id} ({role})")
        return EndOutcome(call_id=call_id, already_ended=False)

    # =========================================================================
    # Inspection and removal
    # =========================================================================

    def status(self, call_id: str) -> CallSession:
        require_fields(callId=call_id)
        return self.fetch_session(call_id, require_credentials=False)

    def delete(self, call_id: str) -> None:
        """Remove a session record. Separate from End, which always retains it."""
        require_fields(callId=call_id)
        self.fetch_session(call_id, require_credentials=False)
        self.sessions.delete(call_id)
        logger.info(f"[ORCHESTRATOR] Call session {call_id} deleted")
