from __future__ import annotations

import hashlib
import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from meraki.core.errors import InvalidPayload

RECORD_KINDS = ("task", "note", "bookmark")


class AttachmentRef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    type: Literal["image", "photo", "voice", "link", "file", "document"] = "link"
    uri: str
    name: str
    size: int | None = None
    mime_type: str | None = None


class SubTask(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    completed: bool = False


class Reminder(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    type: Literal["time", "location", "recurring"] = "time"
    value: str  # ISO date for time, "lat,lon" for location, pattern for recurring
    message: str | None = None
    enabled: bool = True


class TimestampNote(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    timestamp: float = Field(ge=0)  # seconds into the video
    content: str


class RecordPayloadBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1, max_length=500)
    url: str | None = None
    source: Literal["youtube", "shopping", "booking", "generic"] = "generic"
    origin: Literal["mobile", "extension"] | None = None
    tags: list[str] = Field(default_factory=list)
    attachments: list[AttachmentRef] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskPayload(RecordPayloadBase):
    kind: Literal["task"] = "task"
    description: str | None = None
    completed: bool = False
    priority: Literal["low", "medium", "high"] = "medium"
    due_date: str | None = None
    subtasks: list[SubTask] = Field(default_factory=list)
    reminders: list[Reminder] = Field(default_factory=list)


class NotePayload(RecordPayloadBase):
    kind: Literal["note"] = "note"
    content: str = ""
    timestamp_notes: list[TimestampNote] = Field(default_factory=list)


class BookmarkPayload(RecordPayloadBase):
    kind: Literal["bookmark"] = "bookmark"
    url: str = Field(min_length=1)
    description: str | None = None
    favicon: str | None = None
    collections: list[str] = Field(default_factory=list)


RecordPayloadV1 = Annotated[
    TaskPayload | NotePayload | BookmarkPayload,
    Field(discriminator="kind"),
]

adapter = TypeAdapter(RecordPayloadV1)


def validate_payload(kind: str, payload: Any) -> dict:
    """Validate + normalize a kind-specific payload. Returns a JSON-safe dict without `kind`."""

    if kind not in RECORD_KINDS:
        raise InvalidPayload(f"Unknown record kind: {kind!r}")
    if not isinstance(payload, dict):
        raise InvalidPayload("Payload must be an object")

    data = dict(payload)
    given = data.pop("kind", kind)
    if given != kind:
        raise InvalidPayload(f"Payload kind {given!r} does not match record kind {kind!r}")

    try:
        model = adapter.validate_python({**data, "kind": kind})
    except ValidationError as e:
        raise InvalidPayload(f"Invalid {kind} payload", errors=e.errors(include_url=False, include_context=False)) from e

    return model.model_dump(mode="json", exclude={"kind"})


def content_hash(*, kind: str, payload: dict, tombstone: bool) -> str:
    """Stable hash of everything that must be identical for two copies of one version."""

    normalized = json.dumps(
        {"kind": kind, "payload": payload, "tombstone": bool(tombstone)},
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )
    h = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    return f"sha256:{h}"
