from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from meraki.models.tables import BackendDeviceCursor, BackendRecord, BackendRecordVersion, BackendSequence
from meraki.schemas.records_v1 import content_hash
from meraki.schemas.sync_v1 import ChangeEntryV1, PullResponseV1, PushResultV1, RecordV1
from meraki.util.time import now_utc, to_ts

log = logging.getLogger("backend")


def _next_seq(db: Session, *, user_id: str) -> int:
    row = db.get(BackendSequence, user_id)
    if row is None:
        row = BackendSequence(user_id=user_id, last_seq=0)
        db.add(row)
    row.last_seq += 1
    db.flush()
    return row.last_seq


def _touch_device(db: Session, *, user_id: str, device_id: str, pulled_seq: int | None = None) -> BackendDeviceCursor:
    row = db.get(BackendDeviceCursor, (user_id, device_id))
    if row is None:
        row = BackendDeviceCursor(user_id=user_id, device_id=device_id, last_pulled_seq=0, last_seen_at=now_utc())
        db.add(row)
    row.last_seen_at = now_utc()
    if pulled_seq is not None and pulled_seq > row.last_pulled_seq:
        row.last_pulled_seq = pulled_seq
    db.flush()
    return row


def low_watermark(db: Session, *, user_id: str) -> int:
    """Smallest sequence every known device of the user has pulled (0 if any device is new)."""

    value = (
        db.query(func.min(BackendDeviceCursor.last_pulled_seq)).filter(BackendDeviceCursor.user_id == user_id).scalar()
    )
    return int(value or 0)


def _accept_decision(head: BackendRecord | None, entry: ChangeEntryV1, *, device_id: str) -> tuple[bool, str | None]:
    if head is None:
        return True, None
    if entry.version <= head.version:
        return False, "stale"
    if entry.base_version == head.version:
        return True, None
    # A device's own history of a record is linear: anything it pushes later descends
    # from what it pushed before.
    if head.pushed_by == device_id:
        return True, None
    return False, "diverged"


def push_entries(db: Session, *, user_id: str, device_id: str, entries: list[ChangeEntryV1]) -> list[PushResultV1]:
    """Idempotent upsert keyed by (record_id, version).

    A version already stored with the same content is accepted again, so a client
    that lost an acknowledgment can re-send safely. Commits once for the batch.
    """

    _touch_device(db, user_id=user_id, device_id=device_id)

    results: list[PushResultV1] = []
    for entry in entries:
        h = content_hash(kind=entry.kind, payload=entry.snapshot, tombstone=entry.tombstone)

        seen = db.get(BackendRecordVersion, (user_id, entry.record_id, entry.version))
        if seen is not None:
            if seen.content_hash == h:
                results.append(
                    PushResultV1(record_id=entry.record_id, version=entry.version, status="accepted", seq=seen.seq)
                )
            else:
                head = db.get(BackendRecord, (user_id, entry.record_id))
                results.append(
                    PushResultV1(
                        record_id=entry.record_id,
                        version=entry.version,
                        status="rejected",
                        reason="diverged",
                        current_version=head.version if head else None,
                    )
                )
            continue

        head = db.get(BackendRecord, (user_id, entry.record_id))
        ok, reason = _accept_decision(head, entry, device_id=device_id)
        if not ok:
            results.append(
                PushResultV1(
                    record_id=entry.record_id,
                    version=entry.version,
                    status="rejected",
                    reason=reason,
                    current_version=head.version if head else None,
                )
            )
            continue

        seq = _next_seq(db, user_id=user_id)
        if head is None:
            parent_version, parent_hash = 0, None
            head = BackendRecord(user_id=user_id, record_id=entry.record_id)
            db.add(head)
        else:
            parent_version, parent_hash = head.version, head.content_hash
        head.kind = entry.kind
        head.payload = dict(entry.snapshot)
        head.created_at = entry.created_at
        head.updated_at = entry.updated_at
        head.device_id = entry.device_id
        head.version = entry.version
        head.base_version = parent_version
        head.base_hash = parent_hash
        head.tombstone = entry.tombstone
        head.content_hash = h
        head.pushed_by = device_id
        head.seq = seq
        db.add(
            BackendRecordVersion(
                user_id=user_id, record_id=entry.record_id, version=entry.version, content_hash=h, seq=seq
            )
        )
        db.flush()
        results.append(PushResultV1(record_id=entry.record_id, version=entry.version, status="accepted", seq=seq))

    db.commit()

    accepted = sum(1 for r in results if r.status == "accepted")
    log.info("push user=%s device=%s accepted=%s rejected=%s", user_id, device_id, accepted, len(results) - accepted)
    return results


def pull_records(db: Session, *, user_id: str, device_id: str, since: int, limit: int) -> PullResponseV1:
    """Current head of every record changed after `since`, oldest change first.

    Asking for `since=N` tells the backend that the device has applied everything up
    to N; that is what the low watermark is computed from.
    """

    _touch_device(db, user_id=user_id, device_id=device_id, pulled_seq=since)

    rows = (
        db.query(BackendRecord)
        .filter(BackendRecord.user_id == user_id, BackendRecord.seq > since)
        .order_by(BackendRecord.seq.asc())
        .limit(limit + 1)
        .all()
    )
    has_more = len(rows) > limit
    rows = rows[:limit]

    records = [
        RecordV1(
            id=r.record_id,
            kind=r.kind,
            payload=dict(r.payload or {}),
            created_at=r.created_at,
            updated_at=r.updated_at,
            device_id=r.device_id,
            version=r.version,
            base_version=r.base_version,
            base_hash=r.base_hash,
            tombstone=r.tombstone,
            seq=r.seq,
        )
        for r in rows
    ]
    next_cursor = rows[-1].seq if rows else since

    resp = PullResponseV1(
        records=records,
        next_cursor=next_cursor,
        has_more=has_more,
        low_watermark=low_watermark(db, user_id=user_id),
    )
    db.commit()
    return resp


def compact_tombstones(db: Session, *, user_id: str, retention: timedelta, now: datetime | None = None) -> int:
    """Purge backend tombstones older than `retention` that every known device has pulled."""

    cutoff = to_ts((now or now_utc()) - retention)
    watermark = low_watermark(db, user_id=user_id)

    rows = (
        db.query(BackendRecord)
        .filter(
            BackendRecord.user_id == user_id,
            BackendRecord.tombstone.is_(True),
            BackendRecord.seq <= watermark,
            BackendRecord.updated_at < cutoff,
        )
        .all()
    )
    for r in rows:
        db.query(BackendRecordVersion).filter(
            BackendRecordVersion.user_id == user_id, BackendRecordVersion.record_id == r.record_id
        ).delete(synchronize_session=False)
        db.delete(r)
    db.commit()

    if rows:
        log.info("Compacted %s tombstone(s) for user=%s below seq %s", len(rows), user_id, watermark)
    return len(rows)
