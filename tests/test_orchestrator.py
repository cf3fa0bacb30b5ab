import pytest
from firebase_admin import exceptions, messaging

from conftest import FIXED_NOW, FakeDispatcher, failed_push
from signaling.errors import (
    CallNotRingable,
    DependencyFailure,
    DeviceNotFound,
    DeviceUnreachable,
    DispatchError,
    InvalidFieldsError,
    InvalidRequest,
    InvalidRoleError,
    MissingFieldsError,
    NotFound,
    SessionCredentialsMissing,
    SessionNotFound,
    SessionStoreError,
)
from signaling.orchestrator import CallOrchestrator
from signaling.push_service import FCMDispatcher
from signaling.stores import InMemoryDeviceRegistry


def test_initiate_rings_callee_with_session_credentials(orchestrator, dispatcher):
    outcome = orchestrator.initiate("c1", "u1", "u2")

    assert len(dispatcher.sent) == 1
    device_token, notification = dispatcher.sent[0]
    assert device_token == "dev-abc"
    assert notification.data == {
        "type": "incoming_call",
        "callId": "c1",
        "callerId": "u1",
        "channelName": "ch1",
        "mediaToken": "tok1",
    }
    assert outcome.credentials.channel_name == "ch1"
    assert outcome.credentials.media_token == "tok1"
    assert outcome.device_id == "device-1"
    assert outcome.status_recorded is True


def test_initiate_marks_session_ringing(orchestrator, store):
    orchestrator.initiate("c1", "u1", "u2")

    record = store.get("c1")
    assert record["status"] == "ringing"
    assert record["callerId"] == "u1"
    assert record["calleeId"] == "u2"
    assert record["lastRingingAttempt"] == FIXED_NOW
    assert record["statusHistory"] == [{"status": "ringing", "actorId": "u1", "at": FIXED_NOW}]
    assert record["channel"] == "ch1"
    assert record["token"] == "tok1"


def test_initiate_then_accept_return_same_credentials(orchestrator):
    initiated = orchestrator.initiate("c1", "u1", "u2")
    accepted = orchestrator.accept("c1", "u2")

    assert accepted.credentials == initiated.credentials


def test_repeated_initiate_rings_again(orchestrator, dispatcher):
    orchestrator.initiate("c1", "u1", "u2")
    orchestrator.initiate("c1", "u1", "u2")

    assert len(dispatcher.sent) == 2


def test_initiate_without_session_is_not_found(orchestrator, dispatcher):
    with pytest.raises(SessionNotFound) as excinfo:
        orchestrator.initiate("missing", "u1", "u2")

    assert isinstance(excinfo.value, NotFound)
    assert dispatcher.sent == []


@pytest.mark.parametrize("record", [
    {"channel": "ch1"},
    {"token": "tok1"},
    {"channel": "", "token": "tok1"},
    {"channel": "ch1", "token": ""},
    {},
])
def test_initiate_with_incomplete_session_is_distinct_not_found(orchestrator, store, dispatcher, record):
    store.set("c2", record)

    with pytest.raises(SessionCredentialsMissing) as excinfo:
        orchestrator.initiate("c2", "u1", "u2")

    assert isinstance(excinfo.value, NotFound)
    assert excinfo.value.error_code != SessionNotFound.error_code
    assert dispatcher.sent == []


@pytest.mark.parametrize("args, missing", [
    (("", "u1", "u2"), ["callId"]),
    (("c1", None, "u2"), ["callerId"]),
    (("c1", "u1", "   "), ["calleeId"]),
    ((None, None, None), ["callId", "callerId", "calleeId"]),
])
def test_initiate_requires_all_fields(orchestrator, dispatcher, args, missing):
    with pytest.raises(MissingFieldsError) as excinfo:
        orchestrator.initiate(*args)

    assert isinstance(excinfo.value, InvalidRequest)
    assert excinfo.value.extra["missing"] == missing
    assert dispatcher.sent == []


def test_initiate_without_callee_registration_is_not_found(orchestrator, registry):
    with pytest.raises(DeviceNotFound):
        orchestrator.initiate("c1", "u1", "nobody")


def test_initiate_when_no_registration_has_a_token_is_not_found(store, dispatcher):
    registry = InMemoryDeviceRegistry({"u2": {"device-1": {"fcmToken": ""}, "device-2": {"platform": "ios"}}})
    orchestrator = CallOrchestrator(store, registry, dispatcher)

    with pytest.raises(DeviceNotFound):
        orchestrator.initiate("c1", "u1", "u2")

    assert dispatcher.sent == []
    assert "status" not in store.get("c1")


def test_initiate_rings_first_registration_with_a_token(store, dispatcher):
    registry = InMemoryDeviceRegistry({"u2": {
        "device-a": {"fcmToken": ""},
        "device-b": {"fcmToken": "tok-b"},
        "device-c": {"fcmToken": "tok-c"},
    }})
    orchestrator = CallOrchestrator(store, registry, dispatcher)

    outcome = orchestrator.initiate("c1", "u1", "u2")

    assert [token for token, _ in dispatcher.sent] == ["tok-b"]
    assert outcome.device_id == "device-b"


def test_stale_token_moves_on_to_next_device(store):
    registry = InMemoryDeviceRegistry({"u2": {
        "device-a": {"fcmToken": "tok-a"},
        "device-b": {"fcmToken": "tok-b"},
    }})
    dispatcher = FakeDispatcher(results=[failed_push("UNREGISTERED")])
    orchestrator = CallOrchestrator(store, registry, dispatcher)

    outcome = orchestrator.initiate("c1", "u1", "u2")

    assert [token for token, _ in dispatcher.sent] == ["tok-a", "tok-b"]
    assert outcome.device_id == "device-b"
    assert store.get("c1")["status"] == "ringing"


def test_every_token_stale_is_unreachable(store):
    registry = InMemoryDeviceRegistry({"u2": {"device-a": {"fcmToken": "tok-a"}}})
    dispatcher = FakeDispatcher(results=[failed_push("BAD_DEVICE_TOKEN")])
    orchestrator = CallOrchestrator(store, registry, dispatcher)

    with pytest.raises(DeviceUnreachable):
        orchestrator.initiate("c1", "u1", "u2")

    assert "status" not in store.get("c1")


def test_dispatch_failure_is_dependency_failure_without_status_update(store):
    registry = InMemoryDeviceRegistry({"u2": {
        "device-a": {"fcmToken": "tok-a"},
        "device-b": {"fcmToken": "tok-b"},
    }})
    dispatcher = FakeDispatcher(results=[failed_push("exception", "connection reset")])
    orchestrator = CallOrchestrator(store, registry, dispatcher)

    with pytest.raises(DispatchError) as excinfo:
        orchestrator.initiate("c1", "u1", "u2")

    assert isinstance(excinfo.value, DependencyFailure)
    # Transport errors are not retried on the next device
    assert len(dispatcher.sent) == 1
    assert store.updates == []
    assert "status" not in store.get("c1")


def test_status_write_failure_after_ring_still_succeeds(orchestrator, store, dispatcher):
    store.fail_updates = True

    outcome = orchestrator.initiate("c1", "u1", "u2")

    assert len(dispatcher.sent) == 1
    assert outcome.status_recorded is False
    assert outcome.credentials.channel_name == "ch1"


def test_store_read_failure_is_dependency_failure(orchestrator, store, dispatcher):
    store.fail_reads = True

    with pytest.raises(SessionStoreError) as excinfo:
        orchestrator.initiate("c1", "u1", "u2")

    assert isinstance(excinfo.value, DependencyFailure)
    assert dispatcher.sent == []


@pytest.mark.parametrize("status", ["accepted", "ended"])
def test_initiate_on_answered_or_ended_call_is_rejected(orchestrator, store, dispatcher, status):
    store.update("c1", {"status": status})

    with pytest.raises(CallNotRingable) as excinfo:
        orchestrator.initiate("c1", "u1", "u2")

    assert excinfo.value.extra["currentStatus"] == status
    assert dispatcher.sent == []


def test_updates_never_touch_channel_or_token(orchestrator, store):
    orchestrator.initiate("c1", "u1", "u2")
    orchestrator.accept("c1", "u2")
    orchestrator.end("c1", "u2", "callee")

    assert len(store.updates) == 3
    for _, fields in store.updates:
        assert "channel" not in fields
        assert "token" not in fields


def test_accept_returns_credentials_without_ringing(orchestrator, store, dispatcher):
    outcome = orchestrator.accept("c1", "u2")

    assert outcome.credentials.channel_name == "ch1"
    assert outcome.credentials.media_token == "tok1"
    assert outcome.status_changed is True
    assert dispatcher.sent == []

    record = store.get("c1")
    assert record["status"] == "accepted"
    assert record["acceptedBy"] == "u2"
    assert record["acceptedAt"] == FIXED_NOW


def test_accept_without_callee_id_leaves_accepted_by_unset(orchestrator, store):
    orchestrator.accept("c1")

    record = store.get("c1")
    assert record["status"] == "accepted"
    assert "acceptedBy" not in record


def test_accept_after_ringing(orchestrator, store):
    orchestrator.initiate("c1", "u1", "u2")
    orchestrator.accept("c1", "u2")

    history = [item["status"] for item in store.get("c1")["statusHistory"]]
    assert history == ["ringing", "accepted"]


def test_accept_requires_call_id(orchestrator):
    with pytest.raises(MissingFieldsError):
        orchestrator.accept("")


def test_accept_missing_session_or_credentials_is_not_found(orchestrator, store):
    with pytest.raises(SessionNotFound):
        orchestrator.accept("missing")

    store.set("c2", {"channel": "ch2"})
    with pytest.raises(SessionCredentialsMissing):
        orchestrator.accept("c2")


def test_accept_store_write_failure_is_dependency_failure(orchestrator, store):
    store.fail_updates = True

    with pytest.raises(SessionStoreError):
        orchestrator.accept("c1", "u2")


def test_end_records_who_ended_the_call(orchestrator, store):
    outcome = orchestrator.end("c1", "u2", "callee")

    assert outcome.already_ended is False
    record = store.get("c1")
    assert record["status"] == "ended"
    assert record["endedBy"] == "u2"
    assert record["endedRole"] == "callee"
    assert record["endedAt"] == FIXED_NOW


def test_end_is_idempotent_and_keeps_first_ender(orchestrator, store):
    orchestrator.end("c1", "u2", "callee")
    second = orchestrator.end("c1", "u1", "caller")

    assert second.already_ended is True
    record = store.get("c1")
    assert record["endedBy"] == "u2"
    assert record["endedRole"] == "callee"
    assert len(store.updates) == 1


def test_accept_after_end_still_returns_credentials(orchestrator, store):
    orchestrator.end("c1", "u2", "callee")

    outcome = orchestrator.accept("c1", "u2")

    assert outcome.credentials.channel_name == "ch1"
    assert outcome.credentials.media_token == "tok1"
    assert outcome.status_changed is False
    assert store.get("c1")["status"] == "ended"


def test_end_infers_role_from_participants(orchestrator, store):
    orchestrator.initiate("c1", "u1", "u2")

    orchestrator.end("c1", "u1")

    assert store.get("c1")["endedRole"] == "caller"


def test_end_normalizes_role_and_rejects_unknown_roles(orchestrator, store):
    with pytest.raises(InvalidRoleError):
        orchestrator.end("c1", "u2", "host")

    orchestrator.end("c1", "u2", "Callee")
    assert store.get("c1")["endedRole"] == "callee"


def test_end_does_not_need_credentials(orchestrator, store):
    store.set("c2", {"status": "ringing"})

    orchestrator.end("c2")

    assert store.get("c2")["status"] == "ended"


def test_end_missing_session_is_not_found(orchestrator):
    with pytest.raises(SessionNotFound):
        orchestrator.end("missing", "u2", "callee")


def test_end_keeps_the_record_and_delete_removes_it(orchestrator, store):
    orchestrator.end("c1", "u2", "callee")
    assert store.get("c1") is not None

    orchestrator.delete("c1")
    assert store.get("c1") is None

    with pytest.raises(SessionNotFound):
        orchestrator.delete("c1")


def test_history_can_be_disabled(store, registry, dispatcher):
    orchestrator = CallOrchestrator(store, registry, dispatcher, record_history=False)

    orchestrator.initiate("c1", "u1", "u2")
    orchestrator.end("c1", "u1")

    assert "statusHistory" not in store.get("c1")


def test_status_returns_session(orchestrator):
    orchestrator.initiate("c1", "u1", "u2")

    session = orchestrator.status("c1")

    assert session.status.value == "ringing"
    assert session.caller_id == "u1"


# =========================================================================
# Per-device push routing
# =========================================================================

def _voip_dispatcher():
    voip = FakeDispatcher()
    voip.platform = "ios"
    return voip


def test_ios_device_with_voip_token_rings_through_voip_transport(store, dispatcher):
    registry = InMemoryDeviceRegistry({"u2": {
        "iphone": {"fcmToken": "fcm-ios", "platform": "ios", "voipToken": "voip-ios"},
    }})
    voip = _voip_dispatcher()
    orchestrator = CallOrchestrator(store, registry, dispatcher, voip_dispatcher=voip)

    outcome = orchestrator.initiate("c1", "u1", "u2")

    assert dispatcher.sent == []
    assert voip.sent[0][0] == "voip-ios"
    assert outcome.device_id == "iphone"
    assert outcome.dispatch.platform == "ios"


def test_android_device_keeps_fcm_when_voip_is_configured(store, dispatcher):
    registry = InMemoryDeviceRegistry({"u2": {
        "pixel": {"fcmToken": "fcm-android", "platform": "android", "voipToken": "ignored"},
    }})
    voip = _voip_dispatcher()
    orchestrator = CallOrchestrator(store, registry, dispatcher, voip_dispatcher=voip)

    orchestrator.initiate("c1", "u1", "u2")

    assert dispatcher.sent[0][0] == "fcm-android"
    assert voip.sent == []


def test_ios_device_falls_back_to_fcm_without_voip_transport(store, dispatcher):
    registry = InMemoryDeviceRegistry({"u2": {
        "iphone": {"fcmToken": "fcm-ios", "platform": "ios", "voipToken": "voip-ios"},
    }})
    orchestrator = CallOrchestrator(store, registry, dispatcher)

    orchestrator.initiate("c1", "u1", "u2")

    assert dispatcher.sent[0][0] == "fcm-ios"


def test_voip_only_device_needs_voip_transport(store, dispatcher):
    registry = InMemoryDeviceRegistry({"u2": {
        "iphone": {"platform": "ios", "voipToken": "voip-ios"},
    }})

    with pytest.raises(DeviceNotFound):
        CallOrchestrator(store, registry, dispatcher).initiate("c1", "u1", "u2")

    voip = _voip_dispatcher()
    CallOrchestrator(store, registry, dispatcher, voip_dispatcher=voip).initiate("c1", "u1", "u2")
    assert voip.sent[0][0] == "voip-ios"


def test_stale_voip_token_moves_on_to_next_device(store, dispatcher):
    registry = InMemoryDeviceRegistry({"u2": {
        "iphone": {"platform": "ios", "voipToken": "voip-old"},
        "pixel": {"fcmToken": "fcm-android", "platform": "android"},
    }})
    voip = _voip_dispatcher()
    voip.results.append(failed_push("BAD_DEVICE_TOKEN"))
    orchestrator = CallOrchestrator(store, registry, dispatcher, voip_dispatcher=voip)

    outcome = orchestrator.initiate("c1", "u1", "u2")

    assert outcome.device_id == "pixel"
    assert dispatcher.sent[0][0] == "fcm-android"


def test_fcm_message_rejection_is_not_a_stale_token(store, monkeypatch):
    sends = []

    def fake_send(message, app=None):
        sends.append(message.token)
        raise exceptions.InvalidArgumentError("Request contains an invalid argument: message is too big")

    monkeypatch.setattr(messaging, "send", fake_send)
    registry = InMemoryDeviceRegistry({"u2": {
        "device-a": {"fcmToken": "tok-a"},
        "device-b": {"fcmToken": "tok-b"},
    }})
    orchestrator = CallOrchestrator(store, registry, FCMDispatcher(app_provider=lambda: object()))

    with pytest.raises(DispatchError) as excinfo:
        orchestrator.initiate("c1", "u1", "u2")

    assert excinfo.value.kind == "dependency_failure"
    assert sends == ["tok-a"]
    assert "status" not in store.get("c1")


# =========================================================================
# Field types
# =========================================================================

@pytest.mark.parametrize("user_id, role", [
    ({"id": "u2"}, None),
    (42, None),
    ("u2", ["callee"]),
])
def test_end_rejects_non_string_fields(orchestrator, store, user_id, role):
    with pytest.raises(InvalidFieldsError):
        orchestrator.end("c1", user_id, role)

    assert store.updates == []


def test_accept_rejects_non_string_callee(orchestrator, store):
    with pytest.raises(InvalidFieldsError) as excinfo:
        orchestrator.accept("c1", {"id": "u2"})

    assert excinfo.value.extra["invalid"] == ["calleeId"]
    assert store.updates == []


def test_non_string_call_id_is_missing(orchestrator):
    with pytest.raises(MissingFieldsError):
        orchestrator.end({"id": "c1"})
