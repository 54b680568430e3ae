from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, replace
from typing import Collection

from meraki.core.errors import ConflictResolutionAmbiguous
from meraki.store.types import PENDING, SYNCED, Record

log = logging.getLogger("resolver")

INSERT = "insert"
DUPLICATE = "duplicate"
STALE = "stale"
FAST_FORWARD = "fast_forward"
ANCESTOR = "ancestor"
CONFLICT = "conflict"


@dataclass(frozen=True)
class Resolution:
    record: Record
    outcome: str
    # True when the result is a new version that other replicas have not seen yet.
    mint_change: bool = False


def resolve(local: Record | None, remote: Record, *, lineage: Collection[tuple[int, str]] = ()) -> Resolution:
    """Merge a remote version of a record into the local one.

    Rules, first match wins:
    - unknown locally: insert the remote copy as synced.
    - same version, same content: duplicate delivery, nothing to merge.
    - remote at or below local.base_version: already part of local history.
    - remote is an older version still queued locally, i.e. `(version, content
      hash)` is in `lineage`: the backend has it, so it becomes the new base and
      local is kept.
    - local has no unsynced change and remote is newer: fast-forward to the
      remote copy.
    - remote replaced exactly the local head on the backend (`base_version` and
      `base_hash` match it): fast-forward, local edits are already part of it.
    - otherwise both sides moved independently since their common ancestor:
      deterministic winner, and a fresh version above both.
    """

    if local is None:
        return Resolution(replace(remote, base_version=remote.version, sync_state=SYNCED), INSERT)

    if remote.version == local.version and remote.content_hash == local.content_hash:
        merged = replace(
            local,
            base_version=max(local.base_version, remote.version),
            sync_state=SYNCED,
            server_seq=remote.server_seq if remote.server_seq is not None else local.server_seq,
        )
        return Resolution(merged, DUPLICATE)

    if remote.version <= local.base_version:
        return Resolution(local, STALE)

    if remote.version < local.version and (remote.version, remote.content_hash) in lineage:
        merged = replace(local, base_version=remote.version, sync_state=PENDING, server_seq=remote.server_seq)
        return Resolution(merged, ANCESTOR)

    if not local.has_unsynced_changes and remote.version > local.version:
        return Resolution(replace(remote, base_version=remote.version, sync_state=SYNCED), FAST_FORWARD)

    # Version numbers alone collide across devices; the parent hash proves the remote was built on this head.
    if remote.base_version == local.version and remote.base_hash == local.content_hash:
        return Resolution(replace(remote, base_version=remote.version, sync_state=SYNCED), FAST_FORWARD)

    return _resolve_conflict(local, remote)


def merge(local: Record, remote: Record, *, lineage: Collection[tuple[int, str]] = ()) -> Record:
    return resolve(local, remote, lineage=lineage).record


def pick_winner(a: Record, b: Record) -> Record:
    """Deterministic winner between two concurrent versions.

    Symmetric: pick_winner(a, b) and pick_winner(b, a) select the same content, so
    every replica that resolves the same pair ends up with the same record.
    """

    # Deletes are sticky against concurrent edits.
    if a.tombstone != b.tombstone:
        return a if a.tombstone else b
    if a.updated_at != b.updated_at:
        return a if a.updated_at > b.updated_at else b
    if a.device_id != b.device_id:
        return a if a.device_id > b.device_id else b
    if a.content_hash == b.content_hash:
        return a
    raise ConflictResolutionAmbiguous(
        f"record={a.id} versions={a.version}/{b.version} tie on updated_at={a.updated_at} device_id={a.device_id}"
    )


def _resolve_conflict(local: Record, remote: Record) -> Resolution:
    try:
        winner = pick_winner(local, remote)
    except ConflictResolutionAmbiguous as e:
        log.error("Conflict resolution ambiguous, falling back to content hash: %s", str(e))
        winner = local if local.content_hash > remote.content_hash else remote

    merged = Record(
        id=local.id,
        kind=winner.kind,
        payload=copy.deepcopy(winner.payload),
        created_at=min(local.created_at, remote.created_at),
        updated_at=winner.updated_at,
        device_id=winner.device_id,
        version=max(local.version, remote.version) + 1,
        base_version=remote.version,
        tombstone=winner.tombstone,
        # Pending until pushed: no other replica has seen this version yet.
        sync_state=PENDING,
        server_seq=remote.server_seq,
    )
    log.info(
        "Resolved conflict on %s: local v%s vs remote v%s -> v%s (winner=%s%s)",
        local.id,
        local.version,
        remote.version,
        merged.version,
        "local" if winner is local else "remote",
        ", tombstone" if merged.tombstone else "",
    )
    return Resolution(merged, CONFLICT, mint_change=True)
