from __future__ import annotations

from celery import Celery

from formsync.core.config import settings

celery = Celery(
    "formsync",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["formsync.tasks.sync_tasks"],
)

celery.conf.update(
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=True,
    task_default_queue="default",
    beat_schedule={
        "probe-connectivity": {
            "task": "formsync.tasks.sync_tasks.probe_connectivity",
            "schedule": 30.0,
        },
    },
)
