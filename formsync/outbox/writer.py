from __future__ import annotations

import logging
from dataclasses import dataclass

from formsync.core.errors import FormLocked
from formsync.forms.lock import FormLockRegistry
from formsync.forms.registry import FormCatalog
from formsync.outbox.adapters.base import SenderAdapter
from formsync.outbox.audit import AuditSink
from formsync.outbox.store import MutationStore
from formsync.schemas.mutation import MutationRequest, compute_body_digest

log = logging.getLogger("outbox_writer")

SAVE_SENT = "sent"
SAVE_QUEUED = "queued"
SAVE_FAILED = "failed"


@dataclass(frozen=True)
class SaveResult:
    status: str  # sent | queued | failed
    detail: str
    form_key: str
    mutation_id: int | None = None
    status_code: int | None = None
    locked: bool = False
    # Queued behind earlier undelivered saves for the same target, not because of a failure.
    deferred: bool = False

    def as_dict(self) -> dict:
        return {
            "status": self.status,
            "detail": self.detail,
            "form_key": self.form_key,
            "mutation_id": self.mutation_id,
            "status_code": self.status_code,
            "locked": self.locked,
        }


class OutboxWriter:
    def __init__(
        self,
        *,
        store: MutationStore,
        adapter: SenderAdapter,
        locks: FormLockRegistry,
        catalog: FormCatalog,
        audit: AuditSink | None = None,
    ):
        self.store = store
        self.adapter = adapter
        self.locks = locks
        self.catalog = catalog
        self.audit = audit

    def queue_or_send(self, request: MutationRequest) -> SaveResult:
        """Single save entry point: deliver now, or queue on transport failure.

        A locked catalogued form refuses the save with FormLocked. While
        earlier saves for the same target are still undelivered the new one
        is queued behind them instead of overtaking them. StorageFailure
        from the store propagates; the caller must not claim the write was
        saved.
        """

        form_key = self.catalog.form_key_for_url(request.url)
        if form_key in self.catalog and self.locks.get(request.owner_id, form_key).is_locked:
            log.info("Save refused for locked form %s (%s)", form_key, request.owner_id)
            raise FormLocked(f"Form {form_key} is locked; unlock it before editing")

        if self.store.has_queued(request.owner_id, form_key):
            mutation_id = self._enqueue(request, form_key, reason="behind_unsynced")
            return SaveResult(
                status=SAVE_QUEUED,
                detail="saved (will sync after earlier changes)",
                form_key=form_key,
                mutation_id=mutation_id,
                deferred=True,
            )

        res = self.adapter.send(
            method=request.method,
            url=request.url,
            body=request.body,
            owner_id=request.owner_id,
            version_token=request.version_token,
        )

        if res.ok:
            self.locks.confirm_saved(request.owner_id, form_key)
            return SaveResult(status=SAVE_SENT, detail="saved", form_key=form_key, status_code=res.status_code, locked=True)

        if not res.retryable:
            # Rejected by the server: retrying the same payload cannot succeed.
            log.warning("Save rejected for %s (%s): %s", form_key, request.owner_id, res.reason)
            return SaveResult(
                status=SAVE_FAILED,
                detail=res.reason or "rejected",
                form_key=form_key,
                status_code=res.status_code,
                locked=self.locks.get(request.owner_id, form_key).is_locked,
            )

        mutation_id = self._enqueue(request, form_key, reason=res.reason or "transport_failure")
        return SaveResult(
            status=SAVE_QUEUED,
            detail="saved (will sync when online)",
            form_key=form_key,
            mutation_id=mutation_id,
            locked=self.locks.get(request.owner_id, form_key).is_locked,
        )

    def _enqueue(self, request: MutationRequest, form_key: str, *, reason: str) -> int:
        mutation_id = self.store.enqueue(request, form_key=form_key)
        if self.audit is not None:
            self.audit.record(
                owner_id=request.owner_id,
                event_type="OUTBOX_QUEUED",
                severity="INFO",
                message=reason,
                context={
                    "mutation_id": mutation_id,
                    "url": request.url,
                    "method": request.method,
                    "body_sha256": compute_body_digest(request.body),
                },
            )
        return mutation_id
