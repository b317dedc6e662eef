from __future__ import annotations

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

# Use JSONB on Postgres, fallback to JSON for SQLite/test environments.
JSONType = JSON().with_variant(JSONB, "postgresql")

from formsync.models.base import Base


class PendingMutation(Base):
    __tablename__ = "pending_mutations"
    # sqlite_autoincrement: ids are never reused, even after the newest row is deleted.
    __table_args__ = (
        Index("ix_pending_mutations_status_id", "status", "id"),
        Index("ix_pending_mutations_owner_id", "owner_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(String(800), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    body: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)

    form_key: Mapped[str] = mapped_column(String(200), nullable=False)
    body_sha256: Mapped[str] = mapped_column(String(80), nullable=False)
    version_token: Mapped[str | None] = mapped_column(String(200), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)  # pending/in-flight/failed
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    enqueued_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)
    claimed_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_log"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)
    context: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)
