from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

SENT = "SENT"
TRANSPORT_FAILED = "TRANSPORT_FAILED"
REJECTED = "REJECTED"


@dataclass(frozen=True)
class SendResult:
    status: str  # SENT | TRANSPORT_FAILED | REJECTED
    status_code: int | None = None
    raw_response: dict | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SENT

    @property
    def retryable(self) -> bool:
        # Only failures where no response was obtained are worth retrying.
        return self.status == TRANSPORT_FAILED


class SenderAdapter(Protocol):
    def send(
        self, *, method: str, url: str, body: dict, owner_id: str, version_token: str | None = None
    ) -> SendResult: ...

    def fetch(self, *, url: str, owner_id: str) -> dict | None: ...

    def ping(self) -> bool: ...
