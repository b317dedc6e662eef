from __future__ import annotations

import logging
from functools import lru_cache

from formsync.core.celery_app import celery
from formsync.core.config import settings
from formsync.outbox.connectivity import ConnectivityWatcher
from formsync.outbox.service import OutboxService, build_outbox_service

log = logging.getLogger("sync_tasks")


@lru_cache(maxsize=1)
def get_outbox() -> OutboxService:
    svc = build_outbox_service(settings)
    svc.initialize()
    return svc


@lru_cache(maxsize=1)
def get_watcher() -> ConnectivityWatcher:
    outbox = get_outbox()
    return ConnectivityWatcher(probe=outbox.adapter.ping, on_regained=lambda: outbox.sync_now())


@celery.task(name="formsync.tasks.sync_tasks.sync_outbox")
def sync_outbox(*, owner_id: str | None = None) -> dict:
    """Drain the outbox once (connectivity regained, or a manual trigger)."""

    report = get_outbox().sync_now(owner_id)
    out = report.as_dict()
    out["ok"] = not report.halted
    return out


@celery.task(name="formsync.tasks.sync_tasks.probe_connectivity")
def probe_connectivity() -> dict:
    """Scheduled probe; replays the outbox only on an offline -> online edge."""

    watcher = get_watcher()
    triggered = watcher.observe()
    return {"ok": True, "online": watcher.online, "sync_triggered": triggered}
