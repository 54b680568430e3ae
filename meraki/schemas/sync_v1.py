from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

SCHEMA = "meraki.sync.v1"


class RecordV1(BaseModel):
    id: str
    kind: Literal["task", "note", "bookmark"]
    payload: dict = Field(default_factory=dict)
    created_at: str
    updated_at: str
    device_id: str
    version: int = Field(ge=1)
    base_version: int = Field(default=0, ge=0)
    base_hash: str | None = None
    tombstone: bool = False
    seq: int | None = None


class ChangeEntryV1(BaseModel):
    record_id: str
    operation: Literal["create", "update", "delete", "merge"]
    kind: Literal["task", "note", "bookmark"]
    snapshot: dict = Field(default_factory=dict)
    tombstone: bool = False
    version: int = Field(ge=1)
    base_version: int = Field(default=0, ge=0)
    device_id: str
    created_at: str
    updated_at: str


class PushRequestV1(BaseModel):
    schema_: Literal["meraki.sync.v1"] = Field(default=SCHEMA, alias="schema")
    device_id: str
    entries: list[ChangeEntryV1] = Field(default_factory=list)


class PushResultV1(BaseModel):
    record_id: str
    version: int
    status: Literal["accepted", "rejected"]
    reason: str | None = None
    seq: int | None = None
    current_version: int | None = None


class PushResponseV1(BaseModel):
    schema_: Literal["meraki.sync.v1"] = Field(default=SCHEMA, alias="schema")
    results: list[PushResultV1] = Field(default_factory=list)


class PullResponseV1(BaseModel):
    schema_: Literal["meraki.sync.v1"] = Field(default=SCHEMA, alias="schema")
    records: list[RecordV1] = Field(default_factory=list)
    next_cursor: int = 0
    has_more: bool = False
    # Smallest backend sequence every known device has pulled; tombstones at or below it are purgeable.
    low_watermark: int = 0
