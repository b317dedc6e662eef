from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Root logger setup for the API process and the Celery worker."""

    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    root.setLevel(lvl)

    # httpx logs every request at INFO; replay passes would drown the outbox logs.
    logging.getLogger("httpx").setLevel(max(lvl, logging.WARNING))
