from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from meraki.api.deps import get_ctx, get_db
from meraki.backend.service import compact_tombstones, pull_records, push_entries
from meraki.core.config import settings
from meraki.core.security import require_admin_token
from meraki.schemas.sync_v1 import PullResponseV1, PushRequestV1, PushResponseV1

log = logging.getLogger("api.sync")

router = APIRouter()

MAX_PULL_LIMIT = 500


@router.post("/push", response_model=PushResponseV1, response_model_by_alias=True)
def push(body: PushRequestV1, ctx=Depends(get_ctx), db: Session = Depends(get_db)) -> PushResponseV1:
    user_id, device_id = ctx
    if body.device_id != device_id:
        raise HTTPException(status_code=400, detail="device_id does not match X-Device-Id")

    results = push_entries(db, user_id=user_id, device_id=device_id, entries=body.entries)
    return PushResponseV1(results=results)


@router.get("/pull", response_model=PullResponseV1, response_model_by_alias=True)
def pull(
    since: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=MAX_PULL_LIMIT),
    ctx=Depends(get_ctx),
    db: Session = Depends(get_db),
) -> PullResponseV1:
    user_id, device_id = ctx
    return pull_records(db, user_id=user_id, device_id=device_id, since=since, limit=limit)


@router.post("/admin/compact", dependencies=[Depends(require_admin_token)])
def compact(
    retention_days: int | None = Query(default=None, ge=0),
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> dict:
    if not x_user_id:
        raise HTTPException(status_code=400, detail="Missing X-User-Id")

    days = settings.TOMBSTONE_RETENTION_DAYS if retention_days is None else retention_days
    purged = compact_tombstones(db, user_id=x_user_id, retention=timedelta(days=days))
    log.info("Admin compaction for user=%s purged=%s", x_user_id, purged)
    return {"ok": True, "purged": purged}
