from __future__ import annotations

import logging
from datetime import timedelta

from meraki.client import MerakiClient
from meraki.core.celery_app import celery
from meraki.core.config import settings

log = logging.getLogger("sync_tasks")

_client: MerakiClient | None = None


def get_client() -> MerakiClient:
    # One replica per worker process; the coordinator's single-flight lock lives on it.
    global _client
    if _client is None:
        _client = MerakiClient.from_settings()
    return _client


@celery.task(name="meraki.tasks.sync_tasks.sync_device")
def sync_device(*, reason: str = "periodic") -> dict:
    """Run one push+pull cycle for this device.

    Never raises for sync failures: they end up in the coordinator status and the
    audit log, and the next scheduled run retries.
    """

    report = get_client().sync(reason)
    if report is None:
        return {"ok": True, "skipped": True}
    if not report.ok and not report.cancelled:
        log.warning("Sync cycle (%s) ended in error: %s", reason, report.error)
    return {
        "ok": report.ok,
        "cancelled": report.cancelled,
        "pushed": report.pushed,
        "rejected": report.rejected,
        "pulled": report.pulled,
        "conflicts": report.conflicts,
        "error": report.error,
    }


@celery.task(name="meraki.tasks.sync_tasks.compact_tombstones")
def compact_tombstones(*, retention_days: int | None = None) -> dict:
    days = settings.TOMBSTONE_RETENTION_DAYS if retention_days is None else retention_days
    purged = get_client().store.compact_tombstones(retention=timedelta(days=days))
    return {"ok": True, "purged": len(purged)}
