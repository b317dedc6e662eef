from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from formsync.forms.lock import FormLockRegistry
from formsync.outbox.adapters.base import SenderAdapter
from formsync.outbox.audit import AuditSink
from formsync.outbox.store import MutationStore
from formsync.schemas.mutation import QueuedMutation, summarize_body
from formsync.util.time import now_utc

log = logging.getLogger("outbox_replayer")


@dataclass
class SyncReport:
    synced: int = 0
    failed: int = 0
    skipped: int = 0
    released_stale: int = 0
    halted: bool = False
    coalesced: bool = False
    halted_at: int | None = None
    delivered: list[int] = field(default_factory=list)
    rejected: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "skipped": self.skipped,
            "released_stale": self.released_stale,
            "halted": self.halted,
            "halted_at": self.halted_at,
            "coalesced": self.coalesced,
            "delivered": list(self.delivered),
            "rejected": list(self.rejected),
        }


class OutboxReplayer:
    """Drains the outbox against the live remote API.

    One pass at a time per process; a trigger that arrives while a pass is
    running returns immediately with `coalesced=True`. Records go out in
    ascending id, up to the newest one present when the pass started. A
    transport failure stops the pass so later records for the same entity
    never overtake an earlier one. A rejected record is dropped and reported,
    so it cannot block the queue.
    """

    def __init__(
        self,
        *,
        store: MutationStore,
        adapter: SenderAdapter,
        locks: FormLockRegistry,
        audit: AuditSink | None = None,
        stale_after: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.adapter = adapter
        self.locks = locks
        self.audit = audit
        self.stale_after = stale_after
        self.clock = clock
        self._running = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def sync_now(self, owner_id: str | None = None) -> SyncReport:
        if not self._running.acquire(blocking=False):
            log.info("Sync already running; trigger coalesced")
            return SyncReport(coalesced=True)
        try:
            return self._drain(owner_id)
        finally:
            self._running.release()

    def _drain(self, owner_id: str | None) -> SyncReport:
        report = SyncReport()
        report.released_stale = self.store.release_stale(self.clock() - self.stale_after)

        # Keys another pass is delivering right now; nothing for them may go out of order.
        blocked = self.store.in_flight_keys(owner_id)
        # Saves arriving mid-pass wait for the next trigger.
        through_id = self.store.last_id(owner_id)

        for m in self.store.list_pending(owner_id, through_id=through_id):
            if m.form_key in blocked:
                report.skipped += 1
                continue
            if not self.store.mark_in_flight(m.id):
                # Claimed by a concurrent pass (or discarded) since we listed it.
                blocked.add(m.form_key)
                report.skipped += 1
                continue

            res = self.adapter.send(
                method=m.method, url=m.url, body=m.body, owner_id=m.owner_id, version_token=m.version_token
            )

            if res.ok:
                self.store.remove(m.id)
                self.locks.confirm_saved(m.owner_id, m.form_key)
                report.synced += 1
                report.delivered.append(m.id)
                self._audit(m, event_type="OUTBOX_SYNCED", severity="INFO", message="synced", extra={})
                continue

            if res.retryable:
                self.store.mark_failed(m.id, res.reason)
                report.halted = True
                report.halted_at = m.id
                log.info("Sync halted at mutation %s (%s); %s", m.id, m.form_key, res.reason)
                break

            self.store.remove(m.id)
            report.failed += 1
            info = {
                "id": m.id,
                "url": m.url,
                "method": m.method,
                "form_key": m.form_key,
                "status_code": res.status_code,
                "reason": res.reason,
                "body_preview": summarize_body(m.body),
            }
            report.rejected.append(info)
            log.warning(
                "Discarded mutation %s %s %s: rejected by remote API (%s) body=%s",
                m.id,
                m.method,
                m.url,
                res.reason,
                info["body_preview"],
            )
            self._audit(m, event_type="OUTBOX_REJECTED", severity="ERROR", message=res.reason or "rejected", extra=info)

        log.info(
            "Sync pass done: synced=%s failed=%s skipped=%s halted=%s", report.synced, report.failed, report.skipped, report.halted
        )
        return report

    def _audit(self, m: QueuedMutation, *, event_type: str, severity: str, message: str, extra: dict) -> None:
        if self.audit is None:
            return
        ctx = {"mutation_id": m.id, "url": m.url, "form_key": m.form_key, "body_sha256": m.body_sha256}
        ctx.update(extra)
        self.audit.record(owner_id=m.owner_id, event_type=event_type, severity=severity, message=message, context=ctx)
