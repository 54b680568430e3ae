from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from meraki.models.tables import AckedVersion, SyncCursorRow
from meraki.util.time import now_utc

_CURSOR_ID = 1


@dataclass(frozen=True)
class SyncCursor:
    last_pulled_seq: int
    last_pulled_at: str | None
    low_watermark: int


class CursorStore:
    """Pull position plus the last acknowledged version per record."""

    def _row(self, db: Session) -> SyncCursorRow:
        row = db.get(SyncCursorRow, _CURSOR_ID)
        if row is None:
            row = SyncCursorRow(id=_CURSOR_ID, last_pulled_seq=0, last_pulled_at=None, low_watermark=0)
            db.add(row)
            db.flush()
        return row

    def load(self, db: Session) -> SyncCursor:
        row = self._row(db)
        return SyncCursor(
            last_pulled_seq=row.last_pulled_seq,
            last_pulled_at=row.last_pulled_at.isoformat() if row.last_pulled_at else None,
            low_watermark=row.low_watermark,
        )

    def advance(self, db: Session, *, next_cursor: int, low_watermark: int) -> None:
        row = self._row(db)
        # Never move backwards, even if a replayed response carries an older cursor.
        row.last_pulled_seq = max(row.last_pulled_seq, next_cursor)
        row.low_watermark = max(row.low_watermark, low_watermark)
        row.last_pulled_at = now_utc()

    def acked_version(self, db: Session, record_id: str) -> int:
        row = db.get(AckedVersion, record_id)
        return row.version if row else 0

    def record_ack(self, db: Session, record_id: str, version: int) -> None:
        row = db.get(AckedVersion, record_id)
        if row is None:
            db.add(AckedVersion(record_id=record_id, version=version))
        elif version > row.version:
            row.version = version

    def forget(self, db: Session, record_id: str) -> None:
        row = db.get(AckedVersion, record_id)
        if row is not None:
            db.delete(row)
