from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI
from sqlalchemy import text

from formsync.api.deps import get_outbox
from formsync.api.routers.forms import router as forms_router
from formsync.api.routers.outbox import router as outbox_router
from formsync.core.config import settings
from formsync.core.db import engine
from formsync.core.errors import StorageFailure
from formsync.core.logging import configure_logging
from formsync.outbox.service import OutboxService

configure_logging(settings.LOG_LEVEL)
log = logging.getLogger("formsync")

app = FastAPI(title=settings.APP_NAME)


def _check_store() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


@app.on_event("startup")
def _startup() -> None:
    if not settings.INIT_STORE_ON_STARTUP:
        log.info("Startup: INIT_STORE_ON_STARTUP=false; skipping outbox store init")
        return
    try:
        get_outbox().initialize()
    except StorageFailure as e:
        # Keep serving: direct saves still work, queueing will report the storage failure.
        log.error("Startup: outbox store unavailable: %s", str(e))


@app.get("/health")
def health(outbox: OutboxService = Depends(get_outbox)) -> dict[str, Any]:
    deps = {
        "store": _check_store(),
        "remote_api": outbox.adapter.ping(),
    }
    # Offline is a normal operating mode; only the local store is required.
    return {"ok": deps["store"], "deps": deps, "app": settings.APP_NAME}


app.include_router(outbox_router, prefix="/outbox", tags=["outbox"])
app.include_router(forms_router, prefix="/forms", tags=["forms"])
