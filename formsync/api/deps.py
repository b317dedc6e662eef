from __future__ import annotations

from functools import lru_cache

from fastapi import Header, HTTPException

from formsync.core.config import settings
from formsync.outbox.service import OutboxService, build_outbox_service


def get_owner(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    """Current identity, supplied by the auth layer in front of this service."""
    if not x_user_id:
        raise HTTPException(status_code=400, detail="Missing X-User-Id")
    return x_user_id


@lru_cache(maxsize=1)
def get_outbox() -> OutboxService:
    return build_outbox_service(settings)
