from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from formsync.models.tables import AuditLog
from formsync.util.time import as_utc, now_utc

log = logging.getLogger("outbox_audit")


class AuditSink(Protocol):
    def record(self, *, owner_id: str | None, event_type: str, severity: str, message: str, context: dict) -> None: ...

    def recent(self, *, owner_id: str | None = None, limit: int = 50) -> list[dict]: ...


class SqlAuditSink:
    """Audit trail in the outbox database, read by the sync-review screen."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def record(self, *, owner_id: str | None, event_type: str, severity: str, message: str, context: dict) -> None:
        db = self._session_factory()
        try:
            db.add(
                AuditLog(
                    owner_id=owner_id,
                    event_type=event_type,
                    severity=severity,
                    message=message[:1000],
                    context=context or {},
                    created_at=now_utc(),
                )
            )
            db.commit()
        except SQLAlchemyError:
            # The mutation outcome is already settled; losing the audit row must not undo it.
            db.rollback()
            log.exception("Failed to record audit event %s", event_type)
        finally:
            db.close()

    def recent(self, *, owner_id: str | None = None, limit: int = 50) -> list[dict]:
        with self._session_factory() as db:
            q = select(AuditLog)
            if owner_id is not None:
                q = q.where(AuditLog.owner_id == owner_id)
            rows = db.execute(q.order_by(AuditLog.id.desc()).limit(limit)).scalars().all()
            return [
                {
                    "id": r.id,
                    "owner_id": r.owner_id,
                    "event_type": r.event_type,
                    "severity": r.severity,
                    "message": r.message,
                    "context": r.context,
                    "created_at": as_utc(r.created_at),
                }
                for r in rows
            ]


class MemoryAuditSink:
    def __init__(self) -> None:
        self.events: list[dict] = []

    def record(self, *, owner_id: str | None, event_type: str, severity: str, message: str, context: dict) -> None:
        self.events.append(
            {
                "id": len(self.events) + 1,
                "owner_id": owner_id,
                "event_type": event_type,
                "severity": severity,
                "message": message,
                "context": context or {},
                "created_at": now_utc(),
            }
        )

    def recent(self, *, owner_id: str | None = None, limit: int = 50) -> list[dict]:
        rows = [e for e in reversed(self.events) if owner_id is None or e["owner_id"] == owner_id]
        return rows[:limit]
