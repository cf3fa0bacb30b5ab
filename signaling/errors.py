"""
Signaling errors.

Every failure an operation can report falls into one of three kinds:

- ``invalid_request``: the caller sent something wrong (missing fields, a
  role we don't know, a call that can no longer ring). Not retryable as is.
- ``not_found``: the session, its credentials or a callee device is missing.
  The caller should check provisioning.
- ``dependency_failure``: the session store or the push transport failed.
  Retrying is the caller's decision, never ours.
"""
from typing import Any, Dict, Iterable, Optional


class SignalingError(Exception):
    kind = "internal"
    status_code = 500
    error_code = "internal_error"
    default_detail = "Signaling error"

    def __init__(self, detail: Optional[str] = None, **extra: Any) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "error": self.error_code,
            "kind": self.kind,
            "message": self.detail,
        }
        body.update(self.extra)
        return body


# =========================================================================
# Caller errors
# =========================================================================

class InvalidRequest(SignalingError):
    kind = "invalid_request"
    status_code = 400
    error_code = "invalid_request"
    default_detail = "Invalid request"


class MissingFieldsError(InvalidRequest):
    error_code = "missing_fields"
    default_detail = "Missing required parameters"

    def __init__(self, required: Iterable[str], missing: Iterable[str]) -> None:
        missing = list(missing)
        super().__init__(
            f"Missing required parameters: {', '.join(missing)}",
            required=list(required),
            missing=missing,
        )


class InvalidFieldsError(InvalidRequest):
    error_code = "invalid_fields"
    default_detail = "Parameters must be strings"

    def __init__(self, invalid: Iterable[str]) -> None:
        invalid = list(invalid)
        super().__init__(
            f"Parameters must be strings: {', '.join(invalid)}",
            invalid=invalid,
        )


class InvalidRoleError(InvalidRequest):
    error_code = "invalid_role"
    default_detail = "role must be 'caller' or 'callee'"


class InvalidCallState(InvalidRequest):
    """The session exists but its status does not allow the requested move."""

    status_code = 409
    error_code = "invalid_call_state"
    default_detail = "Call is not in a state that allows this operation"


class CallNotRingable(InvalidCallState):
    error_code = "call_not_ringable"
    default_detail = "Call has already been answered or ended"


class CallAlreadyProvisioned(InvalidCallState):
    error_code = "call_already_provisioned"
    default_detail = "A session already exists for this callId"


# =========================================================================
# Missing data
# =========================================================================

class NotFound(SignalingError):
    kind = "not_found"
    status_code = 404
    error_code = "not_found"
    default_detail = "Not found"


class SessionNotFound(NotFound):
    error_code = "call_not_found"
    default_detail = "Call session not found"


class SessionCredentialsMissing(NotFound):
    error_code = "call_credentials_missing"
    default_detail = "Channel or media token missing on call session"


class DeviceNotFound(NotFound):
    error_code = "callee_device_not_found"
    default_detail = "No registered device with a push token for callee"


class DeviceUnreachable(NotFound):
    error_code = "callee_device_unreachable"
    default_detail = "Every registered push token for callee was rejected"


# =========================================================================
# Collaborator failures
# =========================================================================

class DependencyFailure(SignalingError):
    kind = "dependency_failure"
    status_code = 502
    error_code = "dependency_failure"
    default_detail = "Upstream dependency failed"


class SessionStoreError(DependencyFailure):
    status_code = 500
    error_code = "session_store_error"
    default_detail = "Session store operation failed"


class DispatchError(DependencyFailure):
    status_code = 502
    error_code = "push_dispatch_failed"
    default_detail = "Push notification could not be delivered"


class MissingConfiguration(DependencyFailure):
    status_code = 500
    error_code = "missing_env"
    default_detail = "Server is missing required configuration"
