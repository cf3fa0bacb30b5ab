import json
import logging
from typing import Optional, Tuple

from django.http import JsonResponse

from .errors import SignalingError

logger = logging.getLogger("signaling")


def json_body(request) -> Tuple[dict, JsonResponse]:
    try:
        body = request.body.decode("utf-8") if request.body else "{}"
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ValueError("JSON body must be an object")
        return data, None
    except (UnicodeDecodeError, json.JSONDecodeError, ValueError) as exc:
        return None, JsonResponse({"error": f"invalid_json: {exc}", "kind": "invalid_request"}, status=400)


def field(data: dict, *names: str) -> Optional[str]:
    """First non-empty value among ``names`` (camelCase first, snake_case aliases after)."""
    for name in names:
        value = data.get(name)
        if value not in (None, ""):
            return value
    return None


def error_response(exc: SignalingError, call_id: Optional[str] = None) -> JsonResponse:
    """Map a signaling error to its JSON response; the message never carries store paths or tokens."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"[{exc.error_code}] callId={call_id}: {exc.detail}")
    return JsonResponse(exc.to_dict(), status=exc.status_code)
