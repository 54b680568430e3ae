from __future__ import annotations

import copy
from dataclasses import dataclass, field

from meraki.models.tables import LocalRecord
from meraki.schemas.records_v1 import content_hash
from meraki.schemas.sync_v1 import RecordV1

LOCAL_ONLY = "local-only"
PENDING = "pending"
SYNCED = "synced"
CONFLICT = "conflict"


@dataclass(frozen=True)
class Record:
    """Immutable snapshot of one record as seen by this replica.

    `payload` is a private deep copy: mutating it never reaches the store, and
    `write_to` copies it again on the way back.
    """

    id: str
    kind: str
    payload: dict = field(hash=False)
    created_at: str
    updated_at: str
    device_id: str
    version: int
    base_version: int = 0
    tombstone: bool = False
    sync_state: str = LOCAL_ONLY
    server_seq: int | None = None
    # Only set on pulled copies: content hash of the backend head this version replaced.
    base_hash: str | None = field(default=None, compare=False)

    @property
    def content_hash(self) -> str:
        return content_hash(kind=self.kind, payload=self.payload, tombstone=self.tombstone)

    @property
    def has_unsynced_changes(self) -> bool:
        return self.version > self.base_version

    @classmethod
    def from_row(cls, row: LocalRecord) -> "Record":
        return cls(
            id=row.id,
            kind=row.kind,
            payload=copy.deepcopy(row.payload or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
            device_id=row.device_id,
            version=row.version,
            base_version=row.base_version,
            tombstone=bool(row.tombstone),
            sync_state=row.sync_state,
            server_seq=row.server_seq,
        )

    @classmethod
    def from_wire(cls, data: RecordV1) -> "Record":
        return cls(
            id=data.id,
            kind=data.kind,
            payload=copy.deepcopy(data.payload),
            created_at=data.created_at,
            updated_at=data.updated_at,
            device_id=data.device_id,
            version=data.version,
            base_version=data.base_version,
            tombstone=data.tombstone,
            sync_state=SYNCED,
            server_seq=data.seq,
            base_hash=data.base_hash,
        )

    def write_to(self, row: LocalRecord) -> LocalRecord:
        row.id = self.id
        row.kind = self.kind
        row.payload = copy.deepcopy(self.payload)
        row.created_at = self.created_at
        row.updated_at = self.updated_at
        row.device_id = self.device_id
        row.version = self.version
        row.base_version = self.base_version
        row.tombstone = self.tombstone
        row.sync_state = self.sync_state
        row.server_seq = self.server_seq
        return row
