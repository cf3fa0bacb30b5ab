"""
Service wiring.

Builds the orchestrator and provisioner once per process from Django settings.
Tests (or any embedding code) can install their own instances with
``override_services`` and go back to the settings-built ones with
``reset_services``.
"""
import logging
import os
import threading

from django.conf import settings

from .firebase_service import RealtimeDatabaseDeviceRegistry, RealtimeDatabaseSessionStore
from .orchestrator import CallOrchestrator
from .provisioning import SessionProvisioner
from .push_service import APNsVoIPDispatcher, FCMDispatcher
from .stores import InMemoryDeviceRegistry, InMemorySessionStore

logger = logging.getLogger("signaling")

_lock = threading.Lock()
_services = {}


def build_stores():
    backend = settings.SIGNALING_STORE_BACKEND
    if backend == "memory":
        logger.warning("Using in-memory session store - data is lost on restart")
        return InMemorySessionStore(), InMemoryDeviceRegistry()
    if backend == "firebase":
        return (
            RealtimeDatabaseSessionStore(settings.SIGNALING_SESSIONS_PATH),
            RealtimeDatabaseDeviceRegistry(settings.SIGNALING_DEVICES_PATH),
        )
    raise ValueError(f"Unknown SIGNALING_STORE_BACKEND: {backend}")


def build_dispatcher():
    return FCMDispatcher()


def build_voip_dispatcher():
    if not settings.SIGNALING_VOIP_PUSH:
        return None
    dispatcher = APNsVoIPDispatcher.from_env()
    if not dispatcher.is_configured():
        logger.info("APNs is not configured - iOS devices are rung through FCM")
        return None
    return dispatcher


def _build():
    sessions, devices = build_stores()
    orchestrator = CallOrchestrator(
        sessions=sessions,
        devices=devices,
        dispatcher=build_dispatcher(),
        record_history=settings.SIGNALING_STATUS_HISTORY,
        ring_sound=settings.SIGNALING_RING_SOUND,
        ring_ttl=settings.SIGNALING_RING_TTL_SECONDS,
        apns_topic=os.environ.get("APNS_BUNDLE_ID"),
        voip_dispatcher=build_voip_dispatcher(),
    )
    provisioner = SessionProvisioner(
        sessions=sessions,
        app_id=os.environ.get("AGORA_APP_ID"),
        app_cert=os.environ.get("AGORA_APP_CERT"),
    )
    return {"orchestrator": orchestrator, "provisioner": provisioner}


def _get(name):
    with _lock:
        if not _services:
            _services.update(_build())
        return _services[name]


def get_orchestrator() -> CallOrchestrator:
    return _get("orchestrator")


def get_provisioner() -> SessionProvisioner:
    return _get("provisioner")


def override_services(orchestrator: CallOrchestrator, provisioner: SessionProvisioner = None) -> None:
    with _lock:
        _services.clear()
        _services["orchestrator"] = orchestrator
        _services["provisioner"] = provisioner or SessionProvisioner(orchestrator.sessions)


def reset_services() -> None:
    with _lock:
        _services.clear()
