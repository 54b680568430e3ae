from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from meraki.capture.ai import ContentAnalyzer, NullAnalyzer
from meraki.core.errors import InvalidPayload
from meraki.store.records import RecordStore
from meraki.store.types import Record
from meraki.util.ids import new_uuid

log = logging.getLogger("capture")

_SHOPPING_HINTS = ("amazon.", "ebay.", "shop", "store")
_BOOKING_HINTS = ("booking.", "hotel", "airbnb.", "expedia.")


class PageHints(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_youtube: bool = False
    is_shopping: bool = False
    is_booking: bool = False
    video_id: str | None = None
    channel: str | None = None
    duration: float | None = None
    product_id: str | None = None
    price: str | None = None


class PageContext(BaseModel):
    """What a capture surface knows about the page or screen being captured."""

    model_config = ConfigDict(extra="ignore")

    url: str
    title: str = Field(min_length=1)
    domain: str
    favicon: str | None = None
    origin: str | None = None
    hints: PageHints = Field(default_factory=PageHints)


def detect_source(domain: str) -> str:
    d = (domain or "").lower()
    if "youtube.com" in d or "youtu.be" in d:
        return "youtube"
    if any(h in d for h in _SHOPPING_HINTS):
        return "shopping"
    if any(h in d for h in _BOOKING_HINTS):
        return "booking"
    return "generic"


def extract_metadata(context: PageContext) -> dict[str, Any]:
    meta: dict[str, Any] = {"domain": context.domain}
    if context.favicon:
        meta["favicon"] = context.favicon

    hints = context.hints
    if hints.is_youtube and hints.video_id:
        meta["video_id"] = hints.video_id
        if hints.channel:
            meta["channel"] = hints.channel
        if hints.duration is not None:
            meta["duration"] = hints.duration
    if hints.is_shopping:
        if hints.product_id:
            meta["product_id"] = hints.product_id
        if hints.price:
            meta["price"] = hints.price
    return meta


def build_payload(context: PageContext, kind: str, content: str, *, tags: list[str] | None = None) -> dict:
    payload: dict[str, Any] = {
        "title": context.title,
        "url": context.url,
        "source": detect_source(context.domain),
        "tags": list(tags or []),
        "metadata": extract_metadata(context),
    }
    if context.origin in ("mobile", "extension"):
        payload["origin"] = context.origin

    if kind == "task":
        payload["description"] = content or None
    elif kind == "note":
        payload["content"] = content or ""
    elif kind == "bookmark":
        payload["description"] = content or None
        payload["favicon"] = context.favicon
    else:
        raise InvalidPayload(f"Unknown record kind: {kind!r}")
    return payload


def create_from_context(
    store: RecordStore,
    context: PageContext,
    kind: str,
    content: str,
    *,
    analyzer: ContentAnalyzer | None = None,
) -> Record:
    """Create one record from a captured page. Every capture is a new record."""

    analysis = (analyzer or NullAnalyzer()).analyze(content)
    record = store.create(build_payload(context, kind, content, tags=analysis.tags), kind)
    log.info("Captured %s %s from %s", kind, record.id, context.domain)
    return record


def save_youtube_note(
    store: RecordStore, context: PageContext, content: str, *, timestamp: float | None = None
) -> Record:
    payload = build_payload(context, "note", content)
    payload["source"] = "youtube"
    if timestamp is not None:
        payload["metadata"]["timestamp"] = timestamp
    return store.create(payload, "note")


def add_timestamp_note(store: RecordStore, note_id: str, *, timestamp: float, content: str) -> Record:
    note = store.get(note_id)
    if note.kind != "note":
        raise InvalidPayload(f"Record {note_id} is a {note.kind}, not a note")

    notes = list(note.payload.get("timestamp_notes") or [])
    notes.append({"id": new_uuid(), "timestamp": timestamp, "content": content})
    metadata = {**(note.payload.get("metadata") or {}), "timestamp": timestamp}
    return store.update(note_id, {"timestamp_notes": notes, "metadata": metadata})


def save_shopping_item(store: RecordStore, context: PageContext, content: str, *, price: str | None = None) -> Record:
    # Shopping captures become tasks: something to review or buy.
    payload = build_payload(context, "task", content)
    payload["source"] = "shopping"
    if price:
        payload["metadata"]["price"] = price
    return store.create(payload, "task")
