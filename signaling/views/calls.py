import logging

from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..errors import SignalingError
from ..http import error_response, field, json_body
from ..services import get_orchestrator
from ..utils import redact

logger = logging.getLogger("signaling")


@csrf_exempt
def call_initiate(request):
    """
    Initiate a call - reads channel/token for callId, rings the callee's
    device and marks the session ringing.
    """
    logger.info(f"[CALL/INITIATE] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    logger.info(f"[CALL/INITIATE] Request data: {redact(data)}")

    call_id = field(data, "callId", "call_id")
    caller_id = field(data, "callerId", "caller_id")
    callee_id = field(data, "calleeId", "callee_id")

    try:
        outcome = get_orchestrator().initiate(call_id, caller_id, callee_id)
    except SignalingError as exc:
        return error_response(exc, call_id)

    if not outcome.status_recorded:
        logger.warning(f"[CALL/INITIATE] Call {call_id} rang but status was not recorded")

    return JsonResponse({
        "success": True,
        "message": "Call data retrieved and ringing sent",
        "callId": call_id,
        "channelName": outcome.credentials.channel_name,
        "mediaToken": outcome.credentials.media_token,
        "pushPlatform": outcome.dispatch.platform,
        "pushMessageId": outcome.dispatch.message_id,
        "statusRecorded": outcome.status_recorded,
    })


@csrf_exempt
def call_accept(request):
    """
    Accept a call - returns channel/token to the callee and marks the session accepted.
    """
    logger.info(f"[CALL/ACCEPT] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    logger.info(f"[CALL/ACCEPT] Request data: {redact(data)}")

    call_id = field(data, "callId", "call_id")
    callee_id = field(data, "calleeId", "callee_id")

    try:
        outcome = get_orchestrator().accept(call_id, callee_id)
    except SignalingError as exc:
        return error_response(exc, call_id)

    return JsonResponse({
        "success": True,
        "message": "Call accepted",
        "callId": call_id,
        "channelName": outcome.credentials.channel_name,
        "mediaToken": outcome.credentials.media_token,
        "status": outcome.status.value,
    })


@csrf_exempt
def call_end(request):
    """
    End a call. Safe to repeat; the session record is kept.
    """
    logger.info(f"[CALL/END] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    logger.info(f"[CALL/END] Request data: {redact(data)}")

    call_id = field(data, "callId", "call_id")
    user_id = field(data, "userId", "user_id")
    role = field(data, "role")

    try:
        outcome = get_orchestrator().end(call_id, user_id, role)
    except SignalingError as exc:
        return error_response(exc, call_id)

    return JsonResponse({
        "success": True,
        "message": "Call ended",
        "callId": call_id,
        "status": "ended",
        "alreadyEnded": outcome.already_ended,
    })


@csrf_exempt
def call_delete(request):
    """
    Delete a call session record outright.
    """
    logger.info(f"[CALL/DELETE] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    call_id = field(data, "callId", "call_id")

    try:
        get_orchestrator().delete(call_id)
    except SignalingError as exc:
        return error_response(exc, call_id)

    return JsonResponse({
        "success": True,
        "callId": call_id,
        "deleted": True,
    })


@csrf_exempt
def call_status(request, call_id):
    """
    Get call status. The media token is never part of this view.
    """
    logger.info(f"[CALL/STATUS] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    try:
        session = get_orchestrator().status(call_id)
    except SignalingError as exc:
        return error_response(exc, call_id)

    return JsonResponse(session.to_public_dict())
