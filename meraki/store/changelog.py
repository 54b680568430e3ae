from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session

from meraki.models.tables import ChangeLogEntry
from meraki.schemas.records_v1 import content_hash


class ChangeLog:
    """Append-only ledger of local mutations awaiting acknowledgment.

    Entries leave the log only through `acknowledge`, which gives at-least-once
    delivery: a crash mid-push re-sends entries the backend may already have.
    All methods run inside the caller's session so an entry commits together with
    the record row it describes.
    """

    def append(self, db: Session, entry: ChangeLogEntry) -> ChangeLogEntry:
        db.add(entry)
        db.flush()
        return entry

    def peek_batch(self, db: Session, max_size: int, *, after_seq: int = 0) -> list[ChangeLogEntry]:
        return (
            db.query(ChangeLogEntry)
            .filter(ChangeLogEntry.seq > after_seq)
            .order_by(ChangeLogEntry.seq.asc())
            .limit(max_size)
            .all()
        )

    def acknowledge(self, db: Session, record_id: str, version: int) -> int:
        return (
            db.query(ChangeLogEntry)
            .filter(ChangeLogEntry.record_id == record_id, ChangeLogEntry.version <= version)
            .delete(synchronize_session=False)
        )

    def pending_count(self, db: Session) -> int:
        return db.query(func.count(ChangeLogEntry.seq)).scalar() or 0

    def has_pending(self, db: Session, record_id: str) -> bool:
        return db.query(ChangeLogEntry.seq).filter(ChangeLogEntry.record_id == record_id).first() is not None

    def lineage(self, db: Session, record_id: str) -> set[tuple[int, str]]:
        """(version, content hash) of every queued local version of a record."""
        rows = db.query(ChangeLogEntry).filter(ChangeLogEntry.record_id == record_id).all()
        return {(e.version, content_hash(kind=e.kind, payload=e.snapshot, tombstone=e.tombstone)) for e in rows}
