from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta

from formsync.core.config import Settings
from formsync.core.errors import MutationInFlight
from formsync.forms.lock import FormLockRegistry
from formsync.forms.registry import FormCatalog, default_catalog
from formsync.outbox.adapters.base import SenderAdapter
from formsync.outbox.adapters.http_api import HttpApiAdapter
from formsync.outbox.audit import AuditSink, SqlAuditSink
from formsync.outbox.replayer import OutboxReplayer, SyncReport
from formsync.outbox.store import MutationStore, SqlMutationStore
from formsync.outbox.writer import SAVE_FAILED, SAVE_SENT, OutboxWriter, SaveResult
from formsync.schemas.mutation import STATUS_IN_FLIGHT, MutationRequest, QueuedMutation

log = logging.getLogger("outbox_service")


class OutboxService:
    """UI-facing outbox API: queue_or_send, list_outbox, sync_now, delete_queued."""

    def __init__(
        self,
        *,
        store: MutationStore,
        adapter: SenderAdapter,
        locks: FormLockRegistry | None = None,
        catalog: FormCatalog | None = None,
        audit: AuditSink | None = None,
        stale_after: timedelta = timedelta(minutes=5),
    ):
        self.store = store
        self.adapter = adapter
        self.locks = locks or FormLockRegistry()
        self.catalog = catalog or default_catalog()
        self.audit = audit
        self.writer = OutboxWriter(store=store, adapter=adapter, locks=self.locks, catalog=self.catalog, audit=audit)
        self.replayer = OutboxReplayer(store=store, adapter=adapter, locks=self.locks, audit=audit, stale_after=stale_after)

    def initialize(self) -> None:
        self.store.initialize()

    def queue_or_send(self, request: MutationRequest) -> SaveResult:
        res = self.writer.queue_or_send(request)
        if not res.deferred:
            return res

        # Earlier saves for this target are still queued; push them out in order, this one last.
        report = self.replayer.sync_now(request.owner_id)
        if res.mutation_id in report.delivered:
            locked = self.locks.get(request.owner_id, res.form_key).is_locked
            return replace(res, status=SAVE_SENT, detail="saved", deferred=False, locked=locked)
        for info in report.rejected:
            if info["id"] == res.mutation_id:
                return replace(
                    res, status=SAVE_FAILED, detail=info["reason"] or "rejected", status_code=info["status_code"], deferred=False
                )
        return res

    def list_outbox(self, owner_id: str | None = None) -> list[QueuedMutation]:
        return self.store.list_all(owner_id)

    def sync_now(self, owner_id: str | None = None) -> SyncReport:
        return self.replayer.sync_now(owner_id)

    def delete_queued(self, mutation_id: int, *, owner_id: str | None = None) -> bool:
        """Manual discard from the sync-review screen. False when nothing was deleted."""
        m = self.store.get(mutation_id)
        if m is None or (owner_id is not None and m.owner_id != owner_id):
            return False
        if m.status == STATUS_IN_FLIGHT:
            raise MutationInFlight(f"mutation {mutation_id} is being delivered")
        removed = self.store.remove(mutation_id)
        if removed:
            log.info("Mutation %s discarded by owner %s", mutation_id, m.owner_id)
            if self.audit is not None:
                self.audit.record(
                    owner_id=m.owner_id,
                    event_type="OUTBOX_DISCARDED",
                    severity="WARNING",
                    message="discarded_by_user",
                    context={"mutation_id": m.id, "url": m.url, "form_key": m.form_key, "body_sha256": m.body_sha256},
                )
        return removed

    def recent_events(self, *, owner_id: str | None = None, limit: int = 50) -> list[dict]:
        if self.audit is None:
            return []
        return self.audit.recent(owner_id=owner_id, limit=limit)


def build_outbox_service(cfg: Settings) -> OutboxService:
    from formsync.core.db import SessionLocal, engine

    store = SqlMutationStore(engine=engine, session_factory=SessionLocal, page_size=cfg.OUTBOX_PAGE_SIZE)
    adapter = HttpApiAdapter(
        base_url=cfg.REMOTE_API_BASE, timeout_s=cfg.REMOTE_API_TIMEOUT_S, health_path=cfg.REMOTE_API_HEALTH_PATH
    )
    return OutboxService(
        store=store,
        adapter=adapter,
        audit=SqlAuditSink(SessionLocal),
        stale_after=timedelta(seconds=cfg.OUTBOX_STALE_IN_FLIGHT_SECONDS),
    )
