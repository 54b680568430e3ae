from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import sessionmaker

from meraki.capture.adapter import PageContext, create_from_context
from meraki.core.config import settings
from meraki.models.base import Base
from meraki.store.records import RecordStore
from meraki.store.types import Record
from meraki.sync.coordinator import CycleReport, SyncCoordinator, SyncStatus
from meraki.sync.transport.base import RemoteTransport
from meraki.sync.transport.http import HttpTransport
from meraki.util.time import MonotonicClock

log = logging.getLogger("client")

TransportFactory = Callable[[str], RemoteTransport]


class MerakiClient:
    """One device's replica: store, change log and coordinator wired together.

    The transport is built from the device id, which only exists once the store
    has opened its database.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        transport_factory: TransportFactory,
        *,
        clock: MonotonicClock | None = None,
        **coordinator_kwargs,
    ):
        self.store = RecordStore(session_factory, clock=clock)
        self.transport = transport_factory(self.store.device_id)
        self.coordinator = SyncCoordinator(self.store, self.transport, **coordinator_kwargs)

    @classmethod
    def from_settings(cls) -> "MerakiClient":
        from meraki.core.db import SessionLocal, engine

        Base.metadata.create_all(bind=engine)

        def http(device_id: str) -> RemoteTransport:
            return HttpTransport(
                base_url=settings.SYNC_BACKEND_URL,
                user_id=settings.SYNC_USER_ID,
                device_id=device_id,
                timeout_s=settings.SYNC_HTTP_TIMEOUT_S,
            )

        client = cls(SessionLocal, http)
        log.info("Client ready [device=%s backend=%s]", client.device_id, settings.SYNC_BACKEND_URL)
        return client

    @property
    def device_id(self) -> str:
        return self.store.device_id

    def create(self, payload: dict, kind: str) -> Record:
        return self.store.create(payload, kind)

    def update(self, record_id: str, patch: dict) -> Record:
        return self.store.update(record_id, patch)

    def delete(self, record_id: str) -> Record:
        return self.store.delete(record_id)

    def get(self, record_id: str) -> Record:
        return self.store.get(record_id)

    def list(self, predicate: Callable[[Record], bool] | None = None, *, kind: str | None = None) -> list[Record]:
        return self.store.list(predicate, kind=kind)

    def capture(self, context: PageContext | dict, kind: str, content: str = "") -> Record:
        if isinstance(context, dict):
            context = PageContext.model_validate(context)
        return create_from_context(self.store, context, kind, content)

    def sync(self, reason: str = "manual") -> CycleReport | None:
        return self.coordinator.trigger(reason)

    def status(self) -> SyncStatus:
        return self.coordinator.status()

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()
