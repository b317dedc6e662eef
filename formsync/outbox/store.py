from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from formsync.core.errors import StorageUnavailable, StorageWriteError
from formsync.models.base import Base
from formsync.models.tables import PendingMutation
from formsync.schemas.mutation import (
    STATUS_FAILED,
    STATUS_IN_FLIGHT,
    STATUS_PENDING,
    MutationRequest,
    QueuedMutation,
    compute_body_digest,
)
from formsync.util.time import as_utc, now_utc

log = logging.getLogger("outbox_store")

_REPLAYABLE = (STATUS_PENDING, STATUS_FAILED)


class MutationStore(Protocol):
    def initialize(self) -> None: ...

    def enqueue(self, mutation: MutationRequest, *, form_key: str) -> int: ...

    def list_pending(self, owner_id: str | None = None, *, through_id: int | None = None) -> Iterable[QueuedMutation]: ...

    def last_id(self, owner_id: str | None = None) -> int: ...

    def has_queued(self, owner_id: str, form_key: str) -> bool: ...

    def list_all(self, owner_id: str | None = None) -> list[QueuedMutation]: ...

    def get(self, mutation_id: int) -> QueuedMutation | None: ...

    def remove(self, mutation_id: int) -> bool: ...

    def mark_in_flight(self, mutation_id: int) -> bool: ...

    def mark_failed(self, mutation_id: int, error: str | None = None) -> bool: ...

    def in_flight_keys(self, owner_id: str | None = None) -> set[str]: ...

    def release_stale(self, older_than: datetime) -> int: ...


class PendingView:
    """Lazy, restartable view of replayable records in ascending id.

    Every iteration starts from the beginning and pages through the table by
    id, so records claimed elsewhere meanwhile are skipped. With `through_id`
    set, records enqueued after that id are left for a later pass.
    """

    def __init__(self, store: "SqlMutationStore", owner_id: str | None, page_size: int, through_id: int | None = None):
        self._store = store
        self._owner_id = owner_id
        self._page_size = page_size
        self._through_id = through_id

    def __iter__(self) -> Iterator[QueuedMutation]:
        last_id = 0
        while True:
            page = self._store._page(
                after_id=last_id, owner_id=self._owner_id, limit=self._page_size, through_id=self._through_id
            )
            if not page:
                return
            for m in page:
                yield m
            last_id = page[-1].id


class SqlMutationStore:
    """Durable outbox backed by a SQLAlchemy database (SQLite by default)."""

    def __init__(self, *, engine: Engine, session_factory: sessionmaker | None = None, page_size: int = 100):
        self._engine = engine
        self._session_factory = session_factory or sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self._page_size = page_size
        self._initialized = False
        self._init_lock = threading.Lock()

    def initialize(self) -> None:
        with self._init_lock:
            if self._initialized:
                return
            try:
                Base.metadata.create_all(bind=self._engine)
            except SQLAlchemyError as e:
                raise StorageUnavailable(f"outbox storage unavailable: {e}") from e
            self._initialized = True
            log.info("Outbox store initialized (%s)", self._engine.url.render_as_string(hide_password=True))

    @contextmanager
    def _session(self, *, write: bool) -> Iterator[Session]:
        self.initialize()
        db = self._session_factory()
        try:
            yield db
            if write:
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            if write:
                raise StorageWriteError(f"outbox write failed: {e}") from e
            raise StorageUnavailable(f"outbox read failed: {e}") from e
        finally:
            db.close()

    def enqueue(self, mutation: MutationRequest, *, form_key: str) -> int:
        with self._session(write=True) as db:
            row = PendingMutation(
                url=mutation.url,
                method=mutation.method,
                body=mutation.body,
                owner_id=mutation.owner_id,
                form_key=form_key,
                body_sha256=compute_body_digest(mutation.body),
                version_token=mutation.version_token,
                status=STATUS_PENDING,
                attempts=0,
                last_error=None,
                enqueued_at=now_utc(),
                claimed_at=None,
            )
            db.add(row)
            db.flush()
            new_id = row.id
        log.info("Queued mutation %s %s %s for owner %s", new_id, mutation.method, mutation.url, mutation.owner_id)
        return new_id

    def _page(self, *, after_id: int, owner_id: str | None, limit: int, through_id: int | None = None) -> list[QueuedMutation]:
        with self._session(write=False) as db:
            q = select(PendingMutation).where(PendingMutation.id > after_id, PendingMutation.status.in_(_REPLAYABLE))
            if owner_id is not None:
                q = q.where(PendingMutation.owner_id == owner_id)
            if through_id is not None:
                q = q.where(PendingMutation.id <= through_id)
            rows = db.execute(q.order_by(PendingMutation.id.asc()).limit(limit)).scalars().all()
            return [_snapshot(r) for r in rows]

    def list_pending(self, owner_id: str | None = None, *, through_id: int | None = None) -> PendingView:
        return PendingView(self, owner_id, self._page_size, through_id)

    def last_id(self, owner_id: str | None = None) -> int:
        with self._session(write=False) as db:
            q = select(func.max(PendingMutation.id))
            if owner_id is not None:
                q = q.where(PendingMutation.owner_id == owner_id)
            return db.execute(q).scalar() or 0

    def has_queued(self, owner_id: str, form_key: str) -> bool:
        """True while any record for this target is still undelivered, in flight or not."""
        with self._session(write=False) as db:
            q = select(PendingMutation.id).where(
                PendingMutation.owner_id == owner_id, PendingMutation.form_key == form_key
            )
            return db.execute(q.limit(1)).first() is not None

    def list_all(self, owner_id: str | None = None) -> list[QueuedMutation]:
        with self._session(write=False) as db:
            q = select(PendingMutation)
            if owner_id is not None:
                q = q.where(PendingMutation.owner_id == owner_id)
            rows = db.execute(q.order_by(PendingMutation.id.asc())).scalars().all()
            return [_snapshot(r) for r in rows]

    def get(self, mutation_id: int) -> QueuedMutation | None:
        with self._session(write=False) as db:
            row = db.get(PendingMutation, mutation_id)
            return _snapshot(row) if row else None

    def remove(self, mutation_id: int) -> bool:
        with self._session(write=True) as db:
            res = db.execute(delete(PendingMutation).where(PendingMutation.id == mutation_id))
            return res.rowcount == 1

    def mark_in_flight(self, mutation_id: int) -> bool:
        # Conditional UPDATE is the claim: only one pass (in any process) wins.
        with self._session(write=True) as db:
            res = db.execute(
                update(PendingMutation)
                .where(PendingMutation.id == mutation_id, PendingMutation.status.in_(_REPLAYABLE))
                .values(status=STATUS_IN_FLIGHT, claimed_at=now_utc(), attempts=PendingMutation.attempts + 1)
            )
            return res.rowcount == 1

    def mark_failed(self, mutation_id: int, error: str | None = None) -> bool:
        with self._session(write=True) as db:
            res = db.execute(
                update(PendingMutation)
                .where(PendingMutation.id == mutation_id, PendingMutation.status == STATUS_IN_FLIGHT)
                .values(status=STATUS_FAILED, claimed_at=None, last_error=(error or "")[:2000] or None)
            )
            return res.rowcount == 1

    def in_flight_keys(self, owner_id: str | None = None) -> set[str]:
        with self._session(write=False) as db:
            q = select(PendingMutation.form_key).where(PendingMutation.status == STATUS_IN_FLIGHT)
            if owner_id is not None:
                q = q.where(PendingMutation.owner_id == owner_id)
            return set(db.execute(q).scalars().all())

    def release_stale(self, older_than: datetime) -> int:
        with self._session(write=True) as db:
            res = db.execute(
                update(PendingMutation)
                .where(PendingMutation.status == STATUS_IN_FLIGHT, PendingMutation.claimed_at < older_than)
                .values(status=STATUS_PENDING, claimed_at=None)
            )
            n = res.rowcount or 0
        if n:
            log.warning("Released %s stale in-flight mutation(s) claimed before %s", n, older_than.isoformat())
        return n


def _snapshot(row: PendingMutation) -> QueuedMutation:
    return QueuedMutation(
        id=row.id,
        url=row.url,
        method=row.method,
        body=dict(row.body or {}),
        owner_id=row.owner_id,
        form_key=row.form_key,
        body_sha256=row.body_sha256,
        status=row.status,
        attempts=row.attempts or 0,
        version_token=row.version_token,
        last_error=row.last_error,
        enqueued_at=as_utc(row.enqueued_at),
        claimed_at=as_utc(row.claimed_at),
    )


class InMemoryMutationStore:
    """Process-local store with the same semantics. Not durable."""

    def __init__(self) -> None:
        self._rows: dict[int, dict] = {}
        self._next_id = 1
        self._mu = threading.Lock()
        self.initialized = False

    def initialize(self) -> None:
        self.initialized = True

    def enqueue(self, mutation: MutationRequest, *, form_key: str) -> int:
        with self._mu:
            new_id = self._next_id
            self._next_id += 1
            self._rows[new_id] = {
                "id": new_id,
                "url": mutation.url,
                "method": mutation.method,
                "body": dict(mutation.body),
                "owner_id": mutation.owner_id,
                "form_key": form_key,
                "body_sha256": compute_body_digest(mutation.body),
                "version_token": mutation.version_token,
                "status": STATUS_PENDING,
                "attempts": 0,
                "last_error": None,
                "enqueued_at": now_utc(),
                "claimed_at": None,
            }
            return new_id

    def _matching(self, owner_id: str | None) -> list[dict]:
        with self._mu:
            rows = sorted(self._rows.values(), key=lambda r: r["id"])
            return [dict(r) for r in rows if owner_id is None or r["owner_id"] == owner_id]

    def list_pending(self, owner_id: str | None = None, *, through_id: int | None = None) -> Iterable[QueuedMutation]:
        return _SnapshotView(self, owner_id, through_id)

    def last_id(self, owner_id: str | None = None) -> int:
        return max((r["id"] for r in self._matching(owner_id)), default=0)

    def has_queued(self, owner_id: str, form_key: str) -> bool:
        return any(r["form_key"] == form_key for r in self._matching(owner_id))

    def list_all(self, owner_id: str | None = None) -> list[QueuedMutation]:
        return [QueuedMutation(**r) for r in self._matching(owner_id)]

    def get(self, mutation_id: int) -> QueuedMutation | None:
        with self._mu:
            r = self._rows.get(mutation_id)
            return QueuedMutation(**r) if r else None

    def remove(self, mutation_id: int) -> bool:
        with self._mu:
            return self._rows.pop(mutation_id, None) is not None

    def mark_in_flight(self, mutation_id: int) -> bool:
        with self._mu:
            r = self._rows.get(mutation_id)
            if r is None or r["status"] not in _REPLAYABLE:
                return False
            r.update(status=STATUS_IN_FLIGHT, claimed_at=now_utc(), attempts=r["attempts"] + 1)
            return True

    def mark_failed(self, mutation_id: int, error: str | None = None) -> bool:
        with self._mu:
            r = self._rows.get(mutation_id)
            if r is None or r["status"] != STATUS_IN_FLIGHT:
                return False
            r.update(status=STATUS_FAILED, claimed_at=None, last_error=error or None)
            return True

    def in_flight_keys(self, owner_id: str | None = None) -> set[str]:
        return {r["form_key"] for r in self._matching(owner_id) if r["status"] == STATUS_IN_FLIGHT}

    def release_stale(self, older_than: datetime) -> int:
        n = 0
        with self._mu:
            for r in self._rows.values():
                if r["status"] == STATUS_IN_FLIGHT and r["claimed_at"] is not None and r["claimed_at"] < older_than:
                    r.update(status=STATUS_PENDING, claimed_at=None)
                    n += 1
        return n


class _SnapshotView:
    # Each iteration takes a fresh sorted snapshot of the rows.
    def __init__(self, store: InMemoryMutationStore, owner_id: str | None, through_id: int | None):
        self._store = store
        self._owner_id = owner_id
        self._through_id = through_id

    def __iter__(self) -> Iterator[QueuedMutation]:
        for r in self._store._matching(self._owner_id):
            if self._through_id is not None and r["id"] > self._through_id:
                return
            if r["status"] in _REPLAYABLE:
                yield QueuedMutation(**r)
