"""
Session provisioning - creates the Created call session that Initiate and
Accept later read. Channel and token are written here once and never again.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from agora_token_builder import RtcTokenBuilder

from .constants import DEFAULT_TOKEN_EXPIRE_SECONDS, ROLE_PUBLISHER
from .errors import CallAlreadyProvisioned, InvalidRequest, MissingConfiguration
from .orchestrator import check_optional_fields
from .sessions import CallStatus
from .stores import SessionStore
from .utils import clamp_expire, generate_call_id, generate_channel_name, now_ms

logger = logging.getLogger("signaling")


@dataclass(frozen=True)
class ProvisionedSession:
    call_id: str
    channel_name: str
    media_token: str
    expire_at: Optional[int] = None


class SessionProvisioner:
    def __init__(
        self,
        sessions: SessionStore,
        app_id: Optional[str] = None,
        app_cert: Optional[str] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.sessions = sessions
        self.app_id = app_id
        self.app_cert = app_cert
        self._clock = clock

    def can_generate_tokens(self) -> bool:
        return bool(self.app_id and self.app_cert)

    def build_token(self, channel_name: str, uid=0, expire=DEFAULT_TOKEN_EXPIRE_SECONDS):
        if not self.can_generate_tokens():
            raise MissingConfiguration(
                "Token generation needs AGORA_APP_ID and AGORA_APP_CERT",
                missing=["AGORA_APP_ID", "AGORA_APP_CERT"],
            )
        try:
            uid_int = int(uid)
        except (TypeError, ValueError):
            raise InvalidRequest("uid must be an integer")

        expire_ts = int(time.time()) + clamp_expire(expire)
        token_value = RtcTokenBuilder.buildTokenWithUid(
            self.app_id, self.app_cert, channel_name, uid_int, ROLE_PUBLISHER, expire_ts
        )
        return token_value, expire_ts

    def provision(
        self,
        call_id: Optional[str] = None,
        caller_id: Optional[str] = None,
        callee_id: Optional[str] = None,
        channel_name: Optional[str] = None,
        media_token: Optional[str] = None,
        uid=0,
        expire=DEFAULT_TOKEN_EXPIRE_SECONDS,
    ) -> ProvisionedSession:
        """
        Write a new session record.

        Raises:
            CallAlreadyProvisioned if a session already exists for ``call_id``
            InvalidFieldsError if an identifier, channel or token is not a string
            MissingConfiguration if a token must be generated without Agora credentials
        """
        check_optional_fields(
            callId=call_id,
            callerId=caller_id,
            calleeId=callee_id,
            channel=channel_name,
            token=media_token,
        )
        call_id = call_id or generate_call_id()
        channel_name = channel_name or generate_channel_name(call_id)

        # Channel and token are immutable once written; never overwrite a session
        if self.sessions.get(call_id) is not None:
            raise CallAlreadyProvisioned(f"A session already exists for callId: {call_id}")

        expire_at = None
        if not media_token:
            media_token, expire_at = self.build_token(channel_name, uid=uid, expire=expire)

        record = {
            "channel": channel_name,
            "token": media_token,
            "status": CallStatus.CREATED.value,
            "createdAt": self._clock(),
        }
        if caller_id:
            record["callerId"] = caller_id
        if callee_id:
            record["calleeId"] = callee_id

        self.sessions.set(call_id, record)
        logger.info(f"[PROVISION] Created call session {call_id}, channel={channel_name}")

        return ProvisionedSession(
            call_id=call_id,
            channel_name=channel_name,
            media_token=media_token,
            expire_at=expire_at,
        )
