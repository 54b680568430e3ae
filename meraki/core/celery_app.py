from __future__ import annotations

from celery import Celery

from meraki.core.config import settings

celery = Celery(
    "meraki",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["meraki.tasks.sync_tasks"],
)

celery.conf.update(
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=True,
    task_default_queue="default",
    beat_schedule={
        "meraki-periodic-sync": {
            "task": "meraki.tasks.sync_tasks.sync_device",
            "schedule": float(settings.SYNC_INTERVAL_SECONDS),
            "kwargs": {"reason": "periodic"},
        },
        "meraki-compact-tombstones": {
            "task": "meraki.tasks.sync_tasks.compact_tombstones",
            "schedule": 24 * 3600.0,
        },
    },
)
