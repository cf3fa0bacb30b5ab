"""
Firebase service - Realtime Database access for call sessions and devices.

Realtime Database layout:
- calls_sessions/{callId}: channel, token, status and audit fields
- calls/{userId}/{deviceId}: fcmToken, optionally platform and voipToken (iOS) per device
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, db, exceptions
from google.auth.exceptions import GoogleAuthError

from .constants import INVALID_KEY_CHARACTERS
from .devices import DeviceRegistration, parse_registrations
from .errors import InvalidRequest, SessionStoreError

logger = logging.getLogger("signaling")

# Firebase Admin initialization
_firebase_app = None
_firebase_init_attempted = False

STORE_ERRORS = (exceptions.FirebaseError, GoogleAuthError)


def get_firebase_app():
    """Get or initialize Firebase Admin app"""
    global _firebase_app, _firebase_init_attempted

    if _firebase_app is not None:
        return _firebase_app

    if _firebase_init_attempted:
        # Already tried and failed
        return None

    _firebase_init_attempted = True

    use_emulator = os.environ.get("FIREBASE_USE_EMULATOR", "false").lower() == "true"
    project_id = os.environ.get("FIREBASE_PROJECT_ID")
    database_url = os.environ.get("FIREBASE_DATABASE_URL")

    logger.info(f"Firebase init: use_emulator={use_emulator}, project_id={project_id}")

    if use_emulator:
        # The Admin SDK routes to the emulator when this variable is set
        database_host = os.environ.get("FIREBASE_DATABASE_EMULATOR_HOST", "localhost:9000")
        os.environ["FIREBASE_DATABASE_EMULATOR_HOST"] = database_host
        project_id = project_id or "demo-project"

        try:
            _firebase_app = firebase_admin.initialize_app(
                credential=None,
                options={
                    "projectId": project_id,
                    "databaseURL": database_url or f"http://{database_host}?ns={project_id}",
                }
            )
            logger.info(f"Firebase Admin initialized with EMULATOR (Database: {database_host})")
        except ValueError as e:
            # Already initialized
            try:
                _firebase_app = firebase_admin.get_app()
                logger.info("Firebase Admin already initialized")
            except ValueError:
                logger.error(f"Firebase init failed: {e}")
                return None
    else:
        if not database_url:
            logger.warning("FIREBASE_DATABASE_URL not set - Realtime Database operations will fail")
            return None

        service_account_json = os.environ.get("FIREBASE_SERVICE_ACCOUNT")
        service_account_path = os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH")

        cred = None
        if service_account_json:
            try:
                cred = credentials.Certificate(json.loads(service_account_json))
                logger.info("Using FIREBASE_SERVICE_ACCOUNT env var")
            except (json.JSONDecodeError, ValueError) as e:
                logger.error(f"Invalid FIREBASE_SERVICE_ACCOUNT JSON: {e}")
        elif service_account_path and os.path.exists(service_account_path):
            cred = credentials.Certificate(service_account_path)
            logger.info(f"Using service account from {service_account_path}")

        if cred is None:
            logger.warning("Firebase credentials not found - Realtime Database operations will fail")
            return None

        options = {"databaseURL": database_url}
        if project_id:
            options["projectId"] = project_id
        try:
            _firebase_app = firebase_admin.initialize_app(cred, options=options)
            logger.info("Firebase Admin initialized (production)")
        except ValueError:
            try:
                _firebase_app = firebase_admin.get_app()
            except ValueError:
                return None

    return _firebase_app


def check_key(value: str, field: str) -> str:
    """Refuse ids the database would read as a different path."""
    if not isinstance(value, str) or not value:
        raise InvalidRequest(f"{field} must be a non-empty string")
    if any(char in INVALID_KEY_CHARACTERS for char in value):
        raise InvalidRequest(f"{field} contains characters that are not allowed")
    return value


class _RealtimeDatabaseNode:
    """Shared plumbing for anything stored under a single Realtime Database path."""

    def __init__(self, path: str, app_provider=get_firebase_app):
        self.path = path.strip("/")
        self._app_provider = app_provider

    def is_available(self) -> bool:
        return self._app_provider() is not None

    def _child(self, key: str, field: str):
        app = self._app_provider()
        if app is None:
            raise SessionStoreError("Session store is not configured")
        check_key(key, field)
        return db.reference(self.path, app=app).child(key)


class RealtimeDatabaseSessionStore(_RealtimeDatabaseNode):
    """SessionStore backed by ``{path}/{callId}`` nodes."""

    def get(self, call_id: str) -> Optional[Dict[str, Any]]:
        ref = self._child(call_id, "callId")
        try:
            data = ref.get()
        except STORE_ERRORS as e:
            logger.error(f"[RTDB] Error reading call session {call_id}: {e}")
            raise SessionStoreError() from e

        if data is None:
            return None
        if not isinstance(data, dict):
            logger.warning(f"[RTDB] Call session {call_id} is not an object")
            return {}
        return data

    def set(self, call_id: str, record: Dict[str, Any]) -> None:
        ref = self._child(call_id, "callId")
        try:
            ref.set(record)
        except STORE_ERRORS as e:
            logger.error(f"[RTDB] Error writing call session {call_id}: {e}")
            raise SessionStoreError() from e

    def update(self, call_id: str, fields: Dict[str, Any]) -> None:
        ref = self._child(call_id, "callId")
        try:
            ref.update(fields)
        except STORE_ERRORS as e:
            logger.error(f"[RTDB] Error updating call session {call_id}: {e}")
            raise SessionStoreError() from e

    def delete(self, call_id: str) -> None:
        ref = self._child(call_id, "callId")
        try:
            ref.delete()
        except STORE_ERRORS as e:
            logger.error(f"[RTDB] Error deleting call session {call_id}: {e}")
            raise SessionStoreError() from e


class RealtimeDatabaseDeviceRegistry(_RealtimeDatabaseNode):
    """DeviceRegistry backed by ``{path}/{userId}/{deviceId}`` nodes."""

    def get(self, user_id: str) -> Optional[List[DeviceRegistration]]:
        ref = self._child(user_id, "calleeId")
        try:
            data = ref.get()
        except STORE_ERRORS as e:
            logger.error(f"[RTDB] Error reading devices for {user_id}: {e}")
            raise SessionStoreError("Device registry lookup failed") from e

        return parse_registrations(user_id, data)
