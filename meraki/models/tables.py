from __future__ import annotations

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from meraki.models.base import Base

JSONType = JSON()

# Record timestamps are stored as fixed-width UTC ISO strings ("2026-01-02T03:04:05.000006Z"):
# they travel over the wire unchanged and compare lexicographically.
TS = String(32)


# --- Local replica (one per device) ---


class LocalRecord(Base):
    __tablename__ = "records"
    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # task/note/bookmark
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[str] = mapped_column(TS, nullable=False)
    updated_at: Mapped[str] = mapped_column(TS, nullable=False)
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    base_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tombstone: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sync_state: Mapped[str] = mapped_column(String(20), nullable=False)  # local-only/pending/synced/conflict
    server_seq: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ChangeLogEntry(Base):
    __tablename__ = "change_log"
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_id: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    operation: Mapped[str] = mapped_column(String(20), nullable=False)  # create/update/delete/merge
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    tombstone: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[str] = mapped_column(TS, nullable=False)
    updated_at: Mapped[str] = mapped_column(TS, nullable=False)
    enqueued_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)


class SyncCursorRow(Base):
    __tablename__ = "sync_cursor"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)  # single row, id=1
    last_pulled_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_pulled_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=True)
    low_watermark: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AckedVersion(Base):
    __tablename__ = "acked_versions"
    record_id: Mapped[str] = mapped_column(String(80), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)


class DeviceState(Base):
    __tablename__ = "device_state"
    key: Mapped[str] = mapped_column(String(50), primary_key=True)  # device_id / record_counter
    value: Mapped[str] = mapped_column(String(200), nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    device_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)
    context: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)


# --- Backend (server process only) ---


class BackendRecord(Base):
    __tablename__ = "backend_records"
    __table_args__ = (Index("ix_backend_records_user_seq", "user_id", "seq"),)

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    record_id: Mapped[str] = mapped_column(String(80), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[str] = mapped_column(TS, nullable=False)
    updated_at: Mapped[str] = mapped_column(TS, nullable=False)
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    # Version and content hash of the head this one replaced.
    base_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    base_hash: Mapped[str | None] = mapped_column(String(80), nullable=True)
    tombstone: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    content_hash: Mapped[str] = mapped_column(String(80), nullable=False)
    pushed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)


class BackendRecordVersion(Base):
    __tablename__ = "backend_record_versions"
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    record_id: Mapped[str] = mapped_column(String(80), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(80), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)


class BackendSequence(Base):
    __tablename__ = "backend_sequences"
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class BackendDeviceCursor(Base):
    __tablename__ = "backend_device_cursors"
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    device_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_pulled_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_seen_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)
