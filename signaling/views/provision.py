import logging

from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..constants import DEFAULT_TOKEN_EXPIRE_SECONDS
from ..errors import SignalingError
from ..http import error_response, field, json_body
from ..services import get_provisioner
from ..utils import redact

logger = logging.getLogger("signaling")


@csrf_exempt
def call_provision(request):
    """
    Create a call session with its channel and media token.
    Generates an Agora token when the request doesn't bring one.
    """
    logger.info(f"[CALL/PROVISION] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        logger.warning(f"[CALL/PROVISION] Method not allowed: {request.method}")
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        logger.error("[CALL/PROVISION] Invalid JSON body")
        return error

    logger.info(f"[CALL/PROVISION] Request data: {redact(data)}")

    call_id = field(data, "callId", "call_id")

    try:
        provisioned = get_provisioner().provision(
            call_id=call_id,
            caller_id=field(data, "callerId", "caller_id"),
            callee_id=field(data, "calleeId", "callee_id"),
            channel_name=field(data, "channel", "channelName"),
            media_token=field(data, "token", "mediaToken"),
            uid=data.get("uid", 0),
            expire=data.get("expire", DEFAULT_TOKEN_EXPIRE_SECONDS),
        )
    except SignalingError as exc:
        return error_response(exc, call_id)

    logger.info(f"[CALL/PROVISION] Success: callId={provisioned.call_id}")
    return JsonResponse({
        "success": True,
        "callId": provisioned.call_id,
        "channelName": provisioned.channel_name,
        "mediaToken": provisioned.media_token,
        "expireAt": provisioned.expire_at,
    }, status=201)
