import os
import sys
import tempfile
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

# Must be set before Django reads settings.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ["SIGNALING_STORE_BACKEND"] = "memory"
os.environ.setdefault("SIGNALING_LOG_DIR", tempfile.mkdtemp(prefix="signaling-logs-"))

import django  # noqa: E402

django.setup()

from django.test.utils import setup_test_environment  # noqa: E402

setup_test_environment()

from signaling.errors import SessionStoreError  # noqa: E402
from signaling.orchestrator import CallOrchestrator  # noqa: E402
from signaling.provisioning import SessionProvisioner  # noqa: E402
from signaling.push_service import PushResult  # noqa: E402
from signaling.services import override_services, reset_services  # noqa: E402
from signaling.stores import InMemoryDeviceRegistry, InMemorySessionStore  # noqa: E402

FIXED_NOW = 1700000000000


class FakeDispatcher:
    """Records every ring; answers with queued results, success by default."""

    platform = "fake"

    def __init__(self, results=None):
        self.sent = []
        self.results = list(results or [])

    def is_configured(self):
        return True

    async def send(self, device_token, notification):
        self.sent.append((device_token, notification))
        if self.results:
            return self.results.pop(0)
        return PushResult(success=True, platform=self.platform, message_id=f"msg-{len(self.sent)}")


class RecordingSessionStore(InMemorySessionStore):
    """In-memory store that remembers every update and can be told to fail."""

    def __init__(self, records=None):
        super().__init__(records)
        self.updates = []
        self.fail_reads = False
        self.fail_updates = False

    def get(self, call_id):
        if self.fail_reads:
            raise SessionStoreError()
        return super().get(call_id)

    def update(self, call_id, fields):
        if self.fail_updates:
            raise SessionStoreError()
        self.updates.append((call_id, fields))
        super().update(call_id, fields)


def failed_push(error_code, error="boom"):
    return PushResult(success=False, platform=FakeDispatcher.platform, error=error, error_code=error_code)


@pytest.fixture()
def store():
    return RecordingSessionStore({"c1": {"channel": "ch1", "token": "tok1"}})


@pytest.fixture()
def registry():
    return InMemoryDeviceRegistry({"u2": {"device-1": {"fcmToken": "dev-abc"}}})


@pytest.fixture()
def dispatcher():
    return FakeDispatcher()


@pytest.fixture()
def orchestrator(store, registry, dispatcher):
    return CallOrchestrator(
        sessions=store,
        devices=registry,
        dispatcher=dispatcher,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture()
def client(orchestrator):
    from django.test import Client

    override_services(orchestrator, SessionProvisioner(orchestrator.sessions, clock=lambda: FIXED_NOW))
    yield Client()
    reset_services()
