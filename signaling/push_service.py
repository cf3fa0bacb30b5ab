"""
Push notification service: builds the incoming-call ring and sends it through
FCM (Firebase Admin SDK) or APNs VoIP (HTTP/2 with JWT authentication).
"""
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx
import jwt
from firebase_admin import exceptions, messaging
from google.auth.exceptions import GoogleAuthError

from .constants import (
    FCM_INVALID_TOKEN_MARKER,
    NOTIFICATION_TYPE_INCOMING_CALL,
    RING_TITLE,
    STALE_TOKEN_ERROR_CODES,
)
from .firebase_service import get_firebase_app

logger = logging.getLogger("signaling")


@dataclass
class PushResult:
    """Result of a push notification attempt"""
    success: bool
    platform: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def stale_token(self) -> bool:
        """The transport rejected the device token itself; nothing rang."""
        return not self.success and self.error_code in STALE_TOKEN_ERROR_CODES


@dataclass(frozen=True)
class RingNotification:
    """Everything a transport needs to ring one callee device."""
    call_id: str
    data: Dict[str, str] = field(repr=False)
    title: str
    body: str
    sound: str = "incoming_call"
    ttl: int = 60
    apns_topic: Optional[str] = None

    @property
    def ios_sound(self) -> str:
        return self.sound if "." in self.sound else f"{self.sound}.wav"

    def apns_headers(self) -> Dict[str, str]:
        headers = {
            "apns-priority": "10",  # High priority for ringing
            "apns-push-type": "alert",
        }
        if self.apns_topic:
            headers["apns-topic"] = self.apns_topic
        return headers

    def apns_payload(self) -> Dict[str, Any]:
        return {
            "aps": {
                "alert": {"title": self.title, "body": self.body},
                "sound": self.ios_sound,
                "content-available": 1,  # Wakes a backgrounded app
            },
            **self.data,
        }


def build_ring_notification(
    call_id: str,
    caller_id: str,
    channel_name: str,
    media_token: str,
    sound: str = "incoming_call",
    ttl: int = 60,
    apns_topic: Optional[str] = None,
) -> RingNotification:
    """Build the incoming call ring. Pure: no I/O, same input gives the same payload."""
    return RingNotification(
        call_id=call_id,
        data={
            "type": NOTIFICATION_TYPE_INCOMING_CALL,
            "callId": call_id,
            "callerId": caller_id,
            "channelName": channel_name,
            "mediaToken": media_token,
        },
        title=RING_TITLE,
        body=f"{caller_id} is calling you!",
        sound=sound,
        ttl=ttl,
        apns_topic=apns_topic,
    )


class NotificationDispatcher(Protocol):
    platform: str

    def is_configured(self) -> bool:
        ...

    async def send(self, device_token: str, notification: RingNotification) -> PushResult:
        ...


def build_fcm_message(device_token: str, notification: RingNotification) -> messaging.Message:
    # FCM data values must be strings
    data = {k: str(v) for k, v in notification.data.items()}
    return messaging.Message(
        token=device_token,
        data=data,
        notification=messaging.Notification(
            title=notification.title,
            body=notification.body,
        ),
        android=messaging.AndroidConfig(
            priority="high",
            ttl=notification.ttl,
            notification=messaging.AndroidNotification(sound=notification.sound),
        ),
        apns=messaging.APNSConfig(
            headers=notification.apns_headers(),
            payload=messaging.APNSPayload(
                aps=messaging.Aps(
                    alert=messaging.ApsAlert(title=notification.title, body=notification.body),
                    sound=notification.ios_sound,
                    content_available=True,
                ),
                **data,
            ),
        ),
    )


class FCMDispatcher:
    """
    Firebase Cloud Messaging dispatcher.
    Uses Firebase Admin SDK; one message reaches Android and iOS (via the apns block).
    """

    platform = "fcm"

    def __init__(self, app_provider=get_firebase_app):
        self._app_provider = app_provider

    def is_configured(self) -> bool:
        return self._app_provider() is not None

    async def send(self, device_token: str, notification: RingNotification) -> PushResult:
        app = self._app_provider()
        if app is None:
            return PushResult(
                success=False,
                platform=self.platform,
                error="FCM not configured",
                error_code="not_configured"
            )

        message = build_fcm_message(device_token, notification)

        try:
            # Send message (synchronous, but fast)
            response = messaging.send(message, app=app)
        except messaging.UnregisteredError:
            logger.warning(f"[FCM] Token unregistered: {device_token[:20]}...")
            return PushResult(
                success=False,
                platform=self.platform,
                error="Token unregistered",
                error_code="UNREGISTERED"
            )
        except exceptions.InvalidArgumentError as e:
            if not _is_token_error(e):
                logger.error(f"[FCM] Message rejected for call {notification.call_id}: {e}")
                return PushResult(
                    success=False,
                    platform=self.platform,
                    error=str(e),
                    error_code=str(e.code)
                )
            logger.warning(f"[FCM] Token rejected: {device_token[:20]}... ({e})")
            return PushResult(
                success=False,
                platform=self.platform,
                error="Invalid registration token",
                error_code="BAD_DEVICE_TOKEN"
            )
        except messaging.SenderIdMismatchError:
            logger.error("[FCM] Sender ID mismatch")
            return PushResult(
                success=False,
                platform=self.platform,
                error="Sender ID mismatch",
                error_code="SENDER_ID_MISMATCH"
            )
        except exceptions.FirebaseError as e:
            logger.error(f"[FCM] Send error for call {notification.call_id}: {e}")
            return PushResult(
                success=False,
                platform=self.platform,
                error=str(e),
                error_code=str(e.code)
            )
        except (GoogleAuthError, ValueError) as e:
            logger.error(f"[FCM] Send error for call {notification.call_id}: {e}")
            return PushResult(
                success=False,
                platform=self.platform,
                error=str(e),
                error_code="exception"
            )

        logger.info(f"[FCM] Message sent successfully: {response}")
        return PushResult(
            success=True,
            platform=self.platform,
            message_id=response
        )


class APNsVoIPDispatcher:
    """
    Apple Push Notification service for VoIP pushes.
    Uses HTTP/2 with JWT authentication.
    """

    APNS_PRODUCTION_HOST = "api.push.apple.com"
    APNS_SANDBOX_HOST = "api.sandbox.push.apple.com"

    platform = "ios"

    def __init__(
        self,
        team_id: Optional[str] = None,
        key_id: Optional[str] = None,
        bundle_id: Optional[str] = None,
        private_key: Optional[str] = None,
        use_sandbox: bool = False,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.team_id = team_id
        self.key_id = key_id
        self.bundle_id = bundle_id
        self.private_key = private_key
        self.use_sandbox = use_sandbox
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> "APNsVoIPDispatcher":
        # Private key can be provided as file path or direct content
        key_path = os.environ.get("APNS_KEY_PATH")
        key_content = os.environ.get("APNS_KEY_CONTENT")

        private_key = None
        if key_path and os.path.exists(key_path):
            with open(key_path, "r") as f:
                private_key = f.read()
        elif key_content:
            # Handle escaped newlines in env var
            private_key = key_content.replace("\\n", "\n")

        return cls(
            team_id=os.environ.get("APNS_TEAM_ID"),
            key_id=os.environ.get("APNS_KEY_ID"),
            bundle_id=os.environ.get("APNS_BUNDLE_ID"),
            private_key=private_key,
            use_sandbox=os.environ.get("APNS_USE_SANDBOX", "0") == "1",
        )

    def is_configured(self) -> bool:
        """Check if APNs is properly configured"""
        return all([
            self.team_id,
            self.key_id,
            self.bundle_id,
            self.private_key
        ])

    def _generate_token(self) -> str:
        """Generate JWT token for APNs authentication"""
        headers = {
            "alg": "ES256",
            "kid": self.key_id
        }
        payload = {
            "iss": self.team_id,
            "iat": int(time.time())
        }
        return jwt.encode(payload, self.private_key, algorithm="ES256", headers=headers)

    def _client(self) -> httpx.AsyncClient:
        if self._transport is not None:
            return httpx.AsyncClient(transport=self._transport)
        return httpx.AsyncClient(http2=True)

    async def send(self, device_token: str, notification: RingNotification) -> PushResult:
        """
        Send VoIP push notification to iOS device.

        Args:
            device_token: The VoIP device token
            notification: The ring to deliver

        Returns:
            PushResult with success status and details
        """
        if not self.is_configured():
            return PushResult(
                success=False,
                platform=self.platform,
                error="APNs not configured",
                error_code="not_configured"
            )

        try:
            auth_token = self._generate_token()
        except (jwt.PyJWTError, ValueError) as e:
            logger.error(f"[APNs] Could not sign provider token: {e}")
            return PushResult(
                success=False,
                platform=self.platform,
                error="Invalid APNs signing key",
                error_code="not_configured"
            )

        host = self.APNS_SANDBOX_HOST if self.use_sandbox else self.APNS_PRODUCTION_HOST
        url = f"https://{host}/3/device/{device_token}"

        headers = {
            "authorization": f"bearer {auth_token}",
            # VoIP push uses .voip suffix on bundle ID
            "apns-topic": f"{self.bundle_id}.voip",
            "apns-push-type": "voip",
            "apns-priority": "10",
            "apns-expiration": "0",  # Immediate delivery only
            "apns-collapse-id": notification.call_id,
        }

        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    headers=headers,
                    json=notification.apns_payload(),
                    timeout=self.timeout
                )
        except httpx.TimeoutException:
            logger.error(f"[APNs] Push timeout for call {notification.call_id}")
            return PushResult(
                success=False,
                platform=self.platform,
                error="Request timeout",
                error_code="timeout"
            )
        except httpx.HTTPError as e:
            logger.error(f"[APNs] Push exception for call {notification.call_id}: {e}")
            return PushResult(
                success=False,
                platform=self.platform,
                error=str(e),
                error_code="exception"
            )

        if response.status_code == 200:
            apns_id = response.headers.get("apns-id")
            logger.info(f"[APNs] VoIP push sent successfully: {apns_id}")
            return PushResult(
                success=True,
                platform=self.platform,
                message_id=apns_id
            )

        try:
            reason = response.json().get("reason", "Unknown")
        except ValueError:
            reason = response.text or "Unknown error"

        logger.error(f"[APNs] Push failed: {response.status_code} - {reason}")
        return PushResult(
            success=False,
            platform=self.platform,
            error=reason,
            error_code=_apns_error_code(response.status_code, reason)
        )


def _apns_error_code(status_code: int, reason: str) -> str:
    if status_code == 410 or reason == "Unregistered":
        return "UNREGISTERED"
    if reason in ("BadDeviceToken", "DeviceTokenNotForTopic"):
        return "BAD_DEVICE_TOKEN"
    return str(status_code)


def _is_token_error(error: exceptions.InvalidArgumentError) -> bool:
    # INVALID_ARGUMENT also covers oversized or malformed messages
    return FCM_INVALID_TOKEN_MARKER in str(error).lower()
