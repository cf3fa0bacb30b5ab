from django.conf import settings
from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..services import get_orchestrator, get_provisioner


@csrf_exempt
def health(request):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    orchestrator = get_orchestrator()

    return JsonResponse({
        "status": "ok",
        "store": settings.SIGNALING_STORE_BACKEND,
        "storeAvailable": orchestrator.sessions.is_available(),
        "push": orchestrator.dispatcher.platform,
        "pushConfigured": orchestrator.dispatcher.is_configured(),
        "voipPush": orchestrator.voip_dispatcher is not None,
        "tokenGeneration": get_provisioner().can_generate_tokens(),
    })
