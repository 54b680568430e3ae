from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from meraki.core.config import settings
from meraki.core.errors import TransportFailure
from meraki.models.tables import AuditLog, ChangeLogEntry, LocalRecord
from meraki.schemas.sync_v1 import ChangeEntryV1
from meraki.store.records import RecordStore
from meraki.store.types import Record
from meraki.sync import resolver
from meraki.sync.transport.base import RemoteTransport
from meraki.util.ids import new_uuid
from meraki.util.time import now_utc, to_ts

log = logging.getLogger("sync")

T = TypeVar("T")

IDLE = "idle"
PUSHING = "pushing"
PULLING = "pulling"
ERROR = "error"

TRIGGER_REASONS = ("manual", "foreground", "launch", "periodic")


@dataclass(frozen=True)
class SyncStatus:
    """Read-only projection for the UI."""

    state: str
    last_sync_at: str | None
    pending_change_count: int
    last_error: str | None


@dataclass
class CycleReport:
    reason: str
    ok: bool = False
    cancelled: bool = False
    pushed: int = 0
    rejected: int = 0
    acked_locally: int = 0
    pulled: int = 0
    fast_forwarded: int = 0
    conflicts: int = 0
    error: str | None = None


class SyncCancelled(Exception):
    pass


def _audit(db: Session, *, device_id: str, event_type: str, severity: str, message: str, context: dict) -> None:
    db.add(
        AuditLog(
            id=new_uuid(),
            device_id=device_id,
            event_type=event_type,
            severity=severity,
            message=message[:1000],
            context=context or {},
            created_at=now_utc(),
        )
    )


class SyncCoordinator:
    """Runs push+pull cycles for one replica, one cycle at a time.

    State machine: idle -> pushing -> pulling -> idle. A failed cycle rests in
    `error` (entries stay queued) until the next trigger starts a new cycle.
    """

    def __init__(
        self,
        store: RecordStore,
        transport: RemoteTransport,
        *,
        batch_size: int | None = None,
        max_attempts: int | None = None,
        backoff_base_s: float | None = None,
        backoff_max_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.transport = transport
        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self.max_attempts = max_attempts or settings.SYNC_MAX_ATTEMPTS
        self.backoff_base_s = settings.SYNC_BACKOFF_BASE_S if backoff_base_s is None else backoff_base_s
        self.backoff_max_s = settings.SYNC_BACKOFF_MAX_S if backoff_max_s is None else backoff_max_s
        self._sleep = sleep

        self._cycle_lock = threading.Lock()
        self._cancel = threading.Event()
        self._state_lock = threading.Lock()
        self._state = IDLE
        self._last_sync_at: str | None = None
        self._last_error: str | None = None
        self._listeners: list[Callable[[SyncStatus], None]] = []

    # --- public surface ---

    def trigger(self, reason: str = "manual") -> CycleReport | None:
        """Run one cycle now. Returns None when a cycle is already in flight."""

        if reason not in TRIGGER_REASONS:
            raise ValueError(f"Unknown sync trigger: {reason}")

        if not self._cycle_lock.acquire(blocking=False):
            log.info("Sync already running; %s trigger ignored", reason)
            return None
        try:
            self._cancel.clear()
            return self._run_cycle(reason)
        finally:
            self._cycle_lock.release()

    def cancel(self) -> None:
        """Stop the running cycle at the next batch boundary."""
        self._cancel.set()

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    def status(self) -> SyncStatus:
        with self.store.session() as db:
            pending = self.store.changelog.pending_count(db)
        with self._state_lock:
            return SyncStatus(
                state=self._state,
                last_sync_at=self._last_sync_at,
                pending_change_count=pending,
                last_error=self._last_error,
            )

    def subscribe(self, callback: Callable[[SyncStatus], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    # --- cycle ---

    def _run_cycle(self, reason: str) -> CycleReport:
        report = CycleReport(reason=reason)
        log.info("Sync cycle started [device=%s reason=%s]", self.store.device_id, reason)
        try:
            self._set_state(PUSHING)
            self._push(report)
            self._set_state(PULLING)
            self._pull(report)
        except SyncCancelled:
            report.cancelled = True
            log.info("Sync cycle cancelled between batches")
            self._record("SYNC_CANCELLED", "INFO", "cancelled", report)
            self._set_state(IDLE)
            return report
        except TransportFailure as e:
            return self._fail(report, f"transport: {e}")
        except Exception as e:
            log.exception("Sync cycle failed unexpectedly: %s", str(e))
            return self._fail(report, f"exception:{type(e).__name__}:{e}")

        report.ok = True
        with self._state_lock:
            self._last_sync_at = to_ts(now_utc())
            self._last_error = None
        log.info(
            "Sync cycle finished: pushed=%s rejected=%s pulled=%s conflicts=%s",
            report.pushed,
            report.rejected,
            report.pulled,
            report.conflicts,
        )
        self._record("SYNC_OK", "INFO", "sync_ok", report)
        self._set_state(IDLE)
        return report

    def _fail(self, report: CycleReport, error: str) -> CycleReport:
        report.error = error
        with self._state_lock:
            self._last_error = error
        self._record("SYNC_FAILED", "ERROR", error, report)
        self._set_state(ERROR)
        return report

    def _checkpoint(self) -> None:
        if self._cancel.is_set():
            raise SyncCancelled()

    def _push(self, report: CycleReport) -> None:
        after_seq = 0
        while True:
            self._checkpoint()
            with self.store.session() as db:
                entries = self.store.changelog.peek_batch(db, self.batch_size, after_seq=after_seq)
                if not entries:
                    return
                after_seq = entries[-1].seq
                outgoing, settled = self._prepare_batch(db, entries)

            for record_id, version in settled:
                self.store.acknowledge_local(record_id, version)
                report.acked_locally += 1

            if not outgoing:
                continue

            results = self._with_retry(lambda: self.transport.push(outgoing), what="push")
            accepted, rejected = self.store.settle_push(results)
            report.pushed += accepted
            report.rejected += rejected

    def _prepare_batch(
        self, db: Session, entries: list[ChangeLogEntry]
    ) -> tuple[list[ChangeEntryV1], list[tuple[str, int]]]:
        """Split a change-log batch into entries to send and entries already delivered.

        Only the entry matching a record's current version is sent (its snapshot is the
        full state); older entries for that record are acknowledged along with it.
        """

        ids = {e.record_id for e in entries}
        heads = {r.id: r for r in db.query(LocalRecord).filter(LocalRecord.id.in_(ids)).all()}

        outgoing: dict[str, ChangeEntryV1] = {}
        settled: list[tuple[str, int]] = []
        for e in entries:
            head = heads.get(e.record_id)
            if head is None:
                settled.append((e.record_id, e.version))
                continue
            delivered = max(head.base_version, self.store.cursor.acked_version(db, e.record_id))
            if e.version <= delivered:
                settled.append((e.record_id, e.version))
                continue
            if e.version < head.version:
                continue
            outgoing[e.record_id] = ChangeEntryV1(
                record_id=e.record_id,
                operation=e.operation,
                kind=e.kind,
                snapshot=dict(e.snapshot or {}),
                tombstone=e.tombstone,
                version=e.version,
                base_version=head.base_version,
                device_id=e.device_id,
                created_at=e.created_at,
                updated_at=e.updated_at,
            )
        return list(outgoing.values()), settled

    def _pull(self, report: CycleReport) -> None:
        while True:
            self._checkpoint()
            with self.store.session() as db:
                since = self.store.cursor.load(db).last_pulled_seq
                db.commit()

            resp = self._with_retry(lambda: self.transport.pull(since, self.batch_size), what="pull")

            if resp.records:
                resolutions = self.store.apply_batch([Record.from_wire(r) for r in resp.records])
                report.pulled += len(resolutions)
                report.fast_forwarded += sum(1 for r in resolutions if r.outcome == resolver.FAST_FORWARD)
                report.conflicts += sum(1 for r in resolutions if r.outcome == resolver.CONFLICT)

            # Only after the whole batch is applied; a crash before this re-fetches it.
            with self.store.session() as db:
                self.store.cursor.advance(db, next_cursor=resp.next_cursor, low_watermark=resp.low_watermark)
                db.commit()

            if not resp.has_more or resp.next_cursor <= since:
                return

    def _with_retry(self, fn: Callable[[], T], *, what: str) -> T:
        sleep_s = self.backoff_base_s
        for i in range(1, self.max_attempts + 1):
            try:
                return fn()
            except TransportFailure as e:
                if not e.retryable or i == self.max_attempts:
                    log.error("Sync: %s failed after %s attempt(s): %s", what, i, str(e))
                    raise
                log.warning("Sync: %s failed (attempt %s/%s): %s", what, i, self.max_attempts, str(e))
                self._sleep(sleep_s)
                sleep_s = min(self.backoff_max_s, sleep_s * 2.0)
        raise AssertionError("unreachable")

    # --- bookkeeping ---

    def _set_state(self, state: str) -> None:
        with self._state_lock:
            self._state = state
        status = self.status()
        for cb in list(self._listeners):
            try:
                cb(status)
            except Exception:
                log.exception("Sync status listener failed")

    def _record(self, event_type: str, severity: str, message: str, report: CycleReport) -> None:
        with self.store.session() as db:
            _audit(
                db,
                device_id=self.store.device_id,
                event_type=event_type,
                severity=severity,
                message=message,
                context={
                    "reason": report.reason,
                    "pushed": report.pushed,
                    "rejected": report.rejected,
                    "acked_locally": report.acked_locally,
                    "pulled": report.pulled,
                    "conflicts": report.conflicts,
                },
            )
            db.commit()
