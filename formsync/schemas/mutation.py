from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

MutationStatus = Literal["pending", "in-flight", "failed"]

STATUS_PENDING = "pending"
STATUS_IN_FLIGHT = "in-flight"
STATUS_FAILED = "failed"


class MutationRequest(BaseModel):
    """A write the UI wants delivered to the remote API."""

    url: str = Field(min_length=1, max_length=800)
    method: Literal["POST", "PUT", "PATCH", "DELETE"] = "POST"
    body: dict[str, Any] = Field(default_factory=dict)
    owner_id: str = Field(min_length=1, max_length=128)
    # Opaque token for optimistic concurrency; forwarded as If-Match.
    version_token: str | None = None

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("url")
    @classmethod
    def _strip_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url must not be blank")
        return v


@dataclass(frozen=True)
class QueuedMutation:
    """Detached snapshot of a pending_mutations row."""

    id: int
    url: str
    method: str
    body: dict
    owner_id: str
    form_key: str
    body_sha256: str
    status: MutationStatus
    attempts: int = 0
    version_token: str | None = None
    last_error: str | None = None
    enqueued_at: datetime | None = None
    claimed_at: datetime | None = None

    def summary(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "method": self.method,
            "owner_id": self.owner_id,
            "form_key": self.form_key,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "enqueued_at": self.enqueued_at,
            "body_sha256": self.body_sha256,
            "body_preview": summarize_body(self.body),
        }


def canonical_json(body: dict) -> str:
    return json.dumps(body, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def compute_body_digest(body: dict) -> str:
    """Stable tag for a payload; two identical saves get the same digest."""
    h = hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()
    return f"sha256:{h}"


def summarize_body(body: dict, n: int = 200) -> str:
    s = canonical_json(body or {})
    return s if len(s) <= n else s[:n] + "…"
