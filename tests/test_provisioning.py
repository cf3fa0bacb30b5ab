import pytest

from conftest import FIXED_NOW
from signaling import provisioning
from signaling.errors import CallAlreadyProvisioned, InvalidFieldsError, InvalidRequest, MissingConfiguration
from signaling.provisioning import SessionProvisioner
from signaling.stores import InMemorySessionStore


@pytest.fixture()
def sessions():
    return InMemorySessionStore()


def test_provision_with_supplied_token(sessions):
    provisioner = SessionProvisioner(sessions, clock=lambda: FIXED_NOW)

    provisioned = provisioner.provision(
        call_id="c1", caller_id="u1", callee_id="u2", channel_name="ch1", media_token="tok1",
    )

    assert provisioned.channel_name == "ch1"
    assert provisioned.media_token == "tok1"
    assert provisioned.expire_at is None
    assert sessions.get("c1") == {
        "channel": "ch1",
        "token": "tok1",
        "status": "created",
        "callerId": "u1",
        "calleeId": "u2",
        "createdAt": FIXED_NOW,
    }


def test_provision_generates_call_id_and_channel(sessions):
    provisioned = SessionProvisioner(sessions).provision(media_token="tok1")

    assert provisioned.call_id
    assert provisioned.channel_name == provisioned.call_id
    assert sessions.get(provisioned.call_id)["channel"] == provisioned.call_id


def test_provision_never_overwrites_a_session(sessions):
    sessions.set("c1", {"channel": "ch1", "token": "tok1", "status": "ringing"})

    with pytest.raises(CallAlreadyProvisioned) as excinfo:
        SessionProvisioner(sessions).provision(call_id="c1", media_token="other")

    assert excinfo.value.status_code == 409
    assert sessions.get("c1")["token"] == "tok1"


def test_provision_builds_agora_token(sessions, monkeypatch):
    calls = []

    def fake_build(app_id, app_cert, channel, uid, role, expire_ts):
        calls.append((app_id, app_cert, channel, uid, role))
        return "agora-token"

    monkeypatch.setattr(provisioning.RtcTokenBuilder, "buildTokenWithUid", fake_build)
    provisioner = SessionProvisioner(sessions, app_id="app", app_cert="cert")

    provisioned = provisioner.provision(call_id="c1", uid="42", expire=10**9)

    assert provisioned.media_token == "agora-token"
    assert provisioned.expire_at is not None
    assert calls == [("app", "cert", "c1", 42, provisioning.ROLE_PUBLISHER)]
    assert sessions.get("c1")["token"] == "agora-token"


def test_provision_without_agora_credentials(sessions):
    with pytest.raises(MissingConfiguration) as excinfo:
        SessionProvisioner(sessions).provision(call_id="c1")

    assert excinfo.value.extra["missing"] == ["AGORA_APP_ID", "AGORA_APP_CERT"]
    assert sessions.get("c1") is None


def test_provision_rejects_non_integer_uid(sessions):
    provisioner = SessionProvisioner(sessions, app_id="app", app_cert="cert")

    with pytest.raises(InvalidRequest):
        provisioner.provision(call_id="c1", uid="abc")


def test_provisioned_session_can_be_rung(sessions, registry, dispatcher):
    from signaling.orchestrator import CallOrchestrator

    SessionProvisioner(sessions).provision(call_id="c9", channel_name="ch9", media_token="tok9")
    orchestrator = CallOrchestrator(sessions, registry, dispatcher)

    outcome = orchestrator.initiate("c9", "u1", "u2")

    assert outcome.credentials.channel_name == "ch9"
    assert dispatcher.sent[0][1].data["mediaToken"] == "tok9"


@pytest.mark.parametrize("fields", [
    {"call_id": {"id": "c1"}},
    {"call_id": "c1", "channel_name": 7, "media_token": "tok1"},
    {"call_id": "c1", "media_token": {"value": "tok1"}},
    {"call_id": "c1", "caller_id": ["u1"], "media_token": "tok1"},
])
def test_provision_rejects_non_string_fields(sessions, fields):
    with pytest.raises(InvalidFieldsError):
        SessionProvisioner(sessions).provision(**fields)

    assert sessions.get("c1") is None
