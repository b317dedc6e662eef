from __future__ import annotations

import logging

from formsync.core.errors import ApplicationFailure, TransportFailure
from formsync.forms.lock import LockState
from formsync.outbox.service import OutboxService
from formsync.outbox.writer import SaveResult
from formsync.schemas.mutation import MutationRequest

log = logging.getLogger("form_service")


def lock_status(outbox: OutboxService, *, owner_id: str, form_key: str) -> dict:
    form = outbox.catalog.get(form_key)
    state = outbox.locks.state(owner_id, form.key)
    queued = [m.id for m in outbox.store.list_all(owner_id) if m.form_key == form.key]
    return {"form_key": form.key, "state": state.value, "locked": state is LockState.LOCKED, "queued": queued}


def refresh_lock(outbox: OutboxService, *, owner_id: str, form_key: str) -> dict:
    """Initialize a form's lock from the remote record.

    Offline, the current in-memory state is kept and reported as stale.
    """
    form = outbox.catalog.get(form_key)
    try:
        record = outbox.adapter.fetch(url=form.fetch_url(owner_id), owner_id=owner_id)
    except TransportFailure as e:
        log.info("Cannot refresh %s for %s while offline: %s", form.key, owner_id, str(e))
        out = lock_status(outbox, owner_id=owner_id, form_key=form.key)
        out.update({"stale": True, "values": None})
        return out
    except ApplicationFailure as e:
        log.warning("Remote API refused %s record for %s: %s", form.key, owner_id, str(e))
        raise

    outbox.locks.load(owner_id, form.key, record, form.is_meaningful)
    out = lock_status(outbox, owner_id=owner_id, form_key=form.key)
    out.update({"stale": False, "values": form.load_values(record) if record else dict(form.defaults)})
    if record and record.get("school_id") is not None:
        out["school_id"] = record.get("school_id")
    return out


def unlock_form(outbox: OutboxService, *, owner_id: str, form_key: str) -> dict:
    form = outbox.catalog.get(form_key)
    outbox.locks.unlock(owner_id, form.key)
    return lock_status(outbox, owner_id=owner_id, form_key=form.key)


def save_form(
    outbox: OutboxService,
    *,
    owner_id: str,
    form_key: str,
    values: dict,
    school_id: str | None = None,
    version_token: str | None = None,
) -> SaveResult:
    """Build the full-state save mutation for a form and hand it to the outbox.

    The body carries every field (defaults filled in), never a delta, so
    replaying saves in order gives last-writer-wins. A locked form raises
    FormLocked from the outbox writer.
    """
    form = outbox.catalog.get(form_key)
    body = dict(form.defaults)
    for k, v in (values or {}).items():
        if k in form.defaults:
            body[k] = v
    body["schoolId"] = school_id
    body["uid"] = owner_id

    req = MutationRequest(url=form.save_path, method="POST", body=body, owner_id=owner_id, version_token=version_token)
    return outbox.queue_or_send(req)
