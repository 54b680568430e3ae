from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from sqlalchemy import text

from meraki.api.routers.sync import router as sync_router
from meraki.core.config import settings
from meraki.core.db import engine
from meraki.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL)
log = logging.getLogger("app")

app = FastAPI(title=settings.APP_NAME)


def _check_db() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


@app.get("/health")
def health() -> dict[str, Any]:
    deps = {"db": _check_db()}
    return {"ok": all(deps.values()), "deps": deps, "app": settings.APP_NAME}


app.include_router(sync_router, prefix="/sync", tags=["sync"])
