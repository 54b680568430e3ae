from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from meraki.core.errors import InvalidPayload, NotFound, RecordInConflict
from meraki.models.tables import ChangeLogEntry, LocalRecord
from meraki.schemas.records_v1 import validate_payload
from meraki.schemas.sync_v1 import PushResultV1
from meraki.store.changelog import ChangeLog
from meraki.store.cursor import CursorStore
from meraki.store.identity import DeviceIdentity
from meraki.store.types import CONFLICT, LOCAL_ONLY, PENDING, SYNCED, Record
from meraki.sync.resolver import ANCESTOR, DUPLICATE, FAST_FORWARD, STALE, Resolution, resolve
from meraki.util.time import MonotonicClock, now_utc, to_ts

log = logging.getLogger("record_store")


class _RecordLocks:
    """One lock per record id, dropped again once nobody holds or waits for it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._refs: dict[str, int] = {}

    @contextmanager
    def hold(self, record_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(record_id, threading.Lock())
            self._refs[record_id] = self._refs.get(record_id, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refs[record_id] -= 1
                if not self._refs[record_id]:
                    del self._refs[record_id]
                    del self._locks[record_id]

    @contextmanager
    def hold_many(self, record_ids: Iterable[str]) -> Iterator[None]:
        # Sorted acquisition keeps two batch writers from deadlocking each other.
        with ExitStack() as stack:
            for record_id in sorted(set(record_ids)):
                stack.enter_context(self.hold(record_id))
            yield


class RecordStore:
    """Authoritative local table of records.

    Every mutation writes one record row and one change-log entry in a single
    transaction while holding that record's lock. Returned records are snapshots;
    callers never see a half-applied write.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        identity: DeviceIdentity | None = None,
        changelog: ChangeLog | None = None,
        cursor: CursorStore | None = None,
        clock: MonotonicClock | None = None,
        resolver: Callable[..., Resolution] = resolve,
    ):
        self._session_factory = session_factory
        self.identity = identity or DeviceIdentity(session_factory)
        self.changelog = changelog or ChangeLog()
        self.cursor = cursor or CursorStore()
        self.clock = clock or MonotonicClock()
        self._resolve = resolver
        self._locks = _RecordLocks()

        # Resolve the device id before any write transaction is open.
        self.device_id = self.identity.device_id
        with self._session_factory() as db:
            latest = (
                db.query(func.max(LocalRecord.updated_at)).filter(LocalRecord.device_id == self.device_id).scalar()
            )
        self.clock.observe(latest)

    def session(self) -> Session:
        return self._session_factory()

    # --- Capture-facing operations ---

    def create(self, payload: dict, kind: str) -> Record:
        normalized = validate_payload(kind, payload)

        # Another session must not read the counter before this one commits.
        with self.identity.allocation(), self._session_factory() as db:
            record_id = self.identity.next_record_id(db)
            ts = self.clock.tick()
            row = LocalRecord(
                id=record_id,
                kind=kind,
                payload=normalized,
                created_at=ts,
                updated_at=ts,
                device_id=self.device_id,
                version=1,
                base_version=0,
                tombstone=False,
                sync_state=LOCAL_ONLY,
                server_seq=None,
            )
            db.add(row)
            self._append_change(db, row, "create")
            db.commit()
            record = Record.from_row(row)

        log.debug("Created %s %s", kind, record.id)
        return record

    def update(self, record_id: str, patch: dict) -> Record:
        if not isinstance(patch, dict):
            raise InvalidPayload("Patch must be an object")

        with self._locks.hold(record_id):
            with self._session_factory() as db:
                row = self._editable_row(db, record_id)
                payload = validate_payload(row.kind, {**row.payload, **patch})

                row.payload = payload
                row.version += 1
                row.updated_at = self.clock.tick()
                row.device_id = self.device_id
                row.sync_state = PENDING
                self._append_change(db, row, "update")
                db.commit()
                return Record.from_row(row)

    def delete(self, record_id: str) -> Record:
        with self._locks.hold(record_id):
            with self._session_factory() as db:
                row = self._editable_row(db, record_id)

                # Payload stays: a concurrent remote edit is still merged against it.
                row.tombstone = True
                row.version += 1
                row.updated_at = self.clock.tick()
                row.device_id = self.device_id
                row.sync_state = PENDING
                self._append_change(db, row, "delete")
                db.commit()
                return Record.from_row(row)

    def get(self, record_id: str, *, include_deleted: bool = False) -> Record:
        with self._session_factory() as db:
            row = db.get(LocalRecord, record_id)
            if row is None or (row.tombstone and not include_deleted):
                raise NotFound(record_id)
            return Record.from_row(row)

    def list(
        self,
        predicate: Callable[[Record], bool] | None = None,
        *,
        kind: str | None = None,
        include_deleted: bool = False,
    ) -> list[Record]:
        with self._session_factory() as db:
            q = db.query(LocalRecord)
            if kind:
                q = q.filter(LocalRecord.kind == kind)
            if not include_deleted:
                q = q.filter(LocalRecord.tombstone.is_(False))
            rows = q.order_by(LocalRecord.updated_at.desc(), LocalRecord.id.asc()).all()
            records = [Record.from_row(r) for r in rows]

        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    # --- Sync-facing operations ---

    def apply(self, remote: Record) -> Resolution:
        return self.apply_batch([remote])[0]

    def apply_batch(self, remotes: Sequence[Record]) -> list[Resolution]:
        """Merge a pulled batch in one transaction; either every record lands or none does."""

        out: list[Resolution] = []
        with self._locks.hold_many(r.id for r in remotes):
            with self._session_factory() as db:
                for remote in remotes:
                    self.clock.observe(remote.updated_at)
                    row = db.get(LocalRecord, remote.id)
                    local = Record.from_row(row) if row is not None else None
                    lineage = ()
                    if local is not None and remote.version < local.version:
                        lineage = self.changelog.lineage(db, remote.id)
                    res = self._resolve(local, remote, lineage=lineage)
                    self._write_resolution(db, row, res)
                    out.append(res)
                db.commit()
        return out

    def settle_push(self, results: Sequence[PushResultV1]) -> tuple[int, int]:
        """Record backend answers for pushed entries. Returns (accepted, rejected)."""

        accepted = rejected = 0
        with self._locks.hold_many(r.record_id for r in results):
            with self._session_factory() as db:
                for res in results:
                    row = db.get(LocalRecord, res.record_id)
                    if res.status == "accepted":
                        accepted += 1
                        self.changelog.acknowledge(db, res.record_id, res.version)
                        self.cursor.record_ack(db, res.record_id, res.version)
                        if row is not None:
                            self._mark_pushed(row, res)
                    else:
                        rejected += 1
                        log.warning(
                            "Push rejected for %s v%s: %s (backend at v%s)",
                            res.record_id,
                            res.version,
                            res.reason,
                            res.current_version,
                        )
                        # Only the current head waits for the resolver; an older version is superseded anyway.
                        if row is not None and row.version == res.version:
                            row.sync_state = CONFLICT
                db.commit()
        return accepted, rejected

    def acknowledge_local(self, record_id: str, version: int) -> None:
        """Drop change-log entries the backend already reflects without sending them."""

        with self._locks.hold(record_id):
            with self._session_factory() as db:
                self.changelog.acknowledge(db, record_id, version)
                db.commit()

    def compact_tombstones(self, *, retention: timedelta, now: datetime | None = None) -> list[str]:
        """Purge tombstones every known device has pulled and that are older than `retention`."""

        cutoff = to_ts((now or now_utc()) - retention)
        with self._session_factory() as db:
            low_watermark = self.cursor.load(db).low_watermark
            candidates = [
                r.id
                for r in db.query(LocalRecord.id)
                .filter(
                    LocalRecord.tombstone.is_(True),
                    LocalRecord.sync_state == SYNCED,
                    LocalRecord.server_seq.is_not(None),
                    LocalRecord.server_seq <= low_watermark,
                    LocalRecord.updated_at < cutoff,
                )
                .all()
            ]
            db.commit()

        purged: list[str] = []
        for record_id in candidates:
            with self._locks.hold(record_id):
                with self._session_factory() as db:
                    row = db.get(LocalRecord, record_id)
                    # Re-check under the lock: a merge may have landed since the scan.
                    if row is None or not row.tombstone or row.sync_state != SYNCED:
                        continue
                    if self.changelog.has_pending(db, record_id):
                        continue
                    db.delete(row)
                    self.cursor.forget(db, record_id)
                    db.commit()
                    purged.append(record_id)

        if purged:
            log.info("Purged %s tombstone(s) below low watermark %s", len(purged), low_watermark)
        return purged

    # --- internals ---

    def _editable_row(self, db: Session, record_id: str) -> LocalRecord:
        row = db.get(LocalRecord, record_id)
        if row is None or row.tombstone:
            raise NotFound(record_id)
        if row.sync_state == CONFLICT:
            raise RecordInConflict(record_id)
        return row

    def _append_change(self, db: Session, row: LocalRecord, operation: str) -> None:
        self.changelog.append(
            db,
            ChangeLogEntry(
                record_id=row.id,
                operation=operation,
                kind=row.kind,
                snapshot=dict(row.payload),
                tombstone=row.tombstone,
                version=row.version,
                device_id=row.device_id,
                created_at=row.created_at,
                updated_at=row.updated_at,
                enqueued_at=now_utc(),
            ),
        )

    def _write_resolution(self, db: Session, row: LocalRecord | None, res: Resolution) -> None:
        if res.outcome == STALE:
            return

        if row is None:
            row = res.record.write_to(LocalRecord())
            db.add(row)
        else:
            res.record.write_to(row)

        if res.outcome in (DUPLICATE, ANCESTOR, FAST_FORWARD):
            # The backend already holds everything up to the new base: anything queued up to it is delivered.
            self.changelog.acknowledge(db, row.id, row.base_version)
        if res.mint_change:
            self._append_change(db, row, "merge")
        db.flush()

    def _mark_pushed(self, row: LocalRecord, res: PushResultV1) -> None:
        if row.version == res.version:
            row.sync_state = SYNCED
            row.base_version = res.version
            row.server_seq = res.seq
        elif row.version > res.version:
            # Newer local edits are still queued; the backend head is now ours.
            row.base_version = max(row.base_version, res.version)
