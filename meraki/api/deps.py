from __future__ import annotations

from fastapi import Header, HTTPException

from meraki.core.db import SessionLocal


def get_ctx(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_device_id: str | None = Header(default=None, alias="X-Device-Id"),
):
    if not x_user_id:
        raise HTTPException(status_code=400, detail="Missing X-User-Id")
    if not x_device_id:
        raise HTTPException(status_code=400, detail="Missing X-Device-Id")
    return x_user_id, x_device_id


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
