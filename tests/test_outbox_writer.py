from __future__ import annotations

import pytest

from formsync.core.errors import FormLocked, StorageWriteError
from formsync.forms.lock import FormLockRegistry, LockState
from formsync.forms.registry import default_catalog
from formsync.outbox.adapters.base import REJECTED, SENT, TRANSPORT_FAILED
from formsync.outbox.service import OutboxService
from formsync.schemas.mutation import MutationRequest
from tests.fakes import BrokenStore, ScriptedAdapter


def _save(armchairs: int, owner: str = "u1") -> MutationRequest:
    return MutationRequest(
        url="/api/save-school-resources", method="post", body={"res_armchairs_good": armchairs}, owner_id=owner
    )


def test_direct_success_is_sent_and_locks_form(outbox, adapter):
    res = outbox.queue_or_send(_save(10))

    assert res.status == "sent"
    assert res.form_key == "school_resources"
    assert res.locked is True
    assert res.mutation_id is None
    assert outbox.list_outbox() == []
    assert adapter.calls[0]["method"] == "POST"
    assert outbox.locks.state("u1", "school_resources") is LockState.LOCKED


def test_transport_failure_is_queued_not_failed(outbox, adapter, audit):
    adapter.outcomes = [TRANSPORT_FAILED]

    res = outbox.queue_or_send(_save(10))

    assert res.status == "queued"
    assert res.detail == "saved (will sync when online)"
    assert res.mutation_id is not None
    # Only remote confirmation locks.
    assert res.locked is False
    assert outbox.locks.state("u1", "school_resources") is LockState.UNLOCKED

    queued = outbox.list_outbox("u1")
    assert [m.id for m in queued] == [res.mutation_id]
    assert queued[0].body == {"res_armchairs_good": 10}
    assert queued[0].form_key == "school_resources"
    assert queued[0].status == "pending"

    assert audit.events[-1]["event_type"] == "OUTBOX_QUEUED"
    assert audit.events[-1]["context"]["mutation_id"] == res.mutation_id


def test_application_failure_is_not_queued(outbox, adapter):
    adapter.outcomes = [REJECTED]

    res = outbox.queue_or_send(_save(10))

    assert res.status == "failed"
    assert res.status_code == 400
    assert "invalid payload" in res.detail
    assert outbox.list_outbox() == []
    assert outbox.locks.state("u1", "school_resources") is LockState.UNLOCKED


def test_storage_failure_propagates_instead_of_claiming_saved():
    adapter = ScriptedAdapter([TRANSPORT_FAILED])
    svc = OutboxService(store=BrokenStore(), adapter=adapter, locks=FormLockRegistry(), catalog=default_catalog())

    with pytest.raises(StorageWriteError):
        svc.queue_or_send(_save(10))


def test_unknown_endpoint_is_keyed_by_path(outbox, adapter):
    adapter.outcomes = [TRANSPORT_FAILED]

    res = outbox.queue_or_send(
        MutationRequest(url="https://remote.example/api/Save-Enrolment/", body={"total": 5}, owner_id="u1")
    )

    assert res.form_key == "/api/save-enrolment"


def test_request_validation():
    with pytest.raises(ValueError):
        MutationRequest(url="   ", body={}, owner_id="u1")
    with pytest.raises(ValueError):
        MutationRequest(url="/x", method="GET", body={}, owner_id="u1")
    with pytest.raises(ValueError):
        MutationRequest(url="/x", body={}, owner_id="")


def test_save_after_reconnect_goes_out_behind_earlier_queued_save(outbox, adapter):
    adapter.outcomes = [TRANSPORT_FAILED]
    first = outbox.queue_or_send(_save(10))
    assert first.status == "queued"

    # Back online: the older queued body must reach the server first.
    second = outbox.queue_or_send(_save(15))

    assert second.status == "sent"
    assert second.locked is True
    assert [c["body"]["res_armchairs_good"] for c in adapter.calls] == [10, 10, 15]
    assert adapter.remote["/api/save-school-resources"] == {"res_armchairs_good": 15}
    assert outbox.list_outbox() == []

    outbox.sync_now("u1")
    assert adapter.remote["/api/save-school-resources"] == {"res_armchairs_good": 15}


def test_save_stays_queued_behind_earlier_save_while_still_offline(outbox, adapter, audit):
    adapter.outcomes = [TRANSPORT_FAILED, TRANSPORT_FAILED]
    first = outbox.queue_or_send(_save(10))

    second = outbox.queue_or_send(_save(15))

    assert second.status == "queued"
    assert second.detail == "saved (will sync after earlier changes)"
    assert second.locked is False
    assert [m.id for m in outbox.list_outbox("u1")] == [first.mutation_id, second.mutation_id]
    # The newer body was never sent ahead of the older one.
    assert [c["body"]["res_armchairs_good"] for c in adapter.calls] == [10, 10]
    assert audit.events[-1]["message"] == "behind_unsynced"
    assert outbox.locks.state("u1", "school_resources") is LockState.UNLOCKED


def test_save_waits_behind_record_another_pass_is_delivering(outbox, adapter):
    adapter.outcomes = [TRANSPORT_FAILED]
    first = outbox.queue_or_send(_save(10))
    outbox.store.mark_in_flight(first.mutation_id)

    second = outbox.queue_or_send(_save(15))

    assert second.status == "queued"
    assert len(adapter.calls) == 1
    assert outbox.store.get(second.mutation_id).status == "pending"


def test_save_queued_behind_is_reported_failed_when_rejected(outbox, adapter):
    adapter.outcomes = [TRANSPORT_FAILED, SENT, REJECTED]
    outbox.queue_or_send(_save(10))

    res = outbox.queue_or_send(_save(-1))

    assert res.status == "failed"
    assert res.status_code == 400
    assert outbox.list_outbox() == []


def test_locked_form_refuses_save_until_unlocked(outbox, adapter):
    outbox.locks.confirm_saved("u1", "school_resources")

    with pytest.raises(FormLocked):
        outbox.queue_or_send(_save(99))

    assert adapter.calls == []
    assert outbox.list_outbox() == []

    outbox.locks.unlock("u1", "school_resources")
    assert outbox.queue_or_send(_save(99)).status == "sent"


def test_lock_is_per_owner_and_ignores_uncatalogued_endpoints(outbox, adapter):
    outbox.locks.confirm_saved("u1", "school_resources")
    assert outbox.queue_or_send(_save(5, owner="u2")).status == "sent"

    enrolment = MutationRequest(url="/api/save-enrolment", body={"total": 5}, owner_id="u1")
    assert outbox.queue_or_send(enrolment).status == "sent"
    assert outbox.queue_or_send(enrolment).status == "sent"
