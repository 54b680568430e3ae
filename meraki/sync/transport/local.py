from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from meraki.backend.service import pull_records, push_entries
from meraki.core.errors import TransportFailure
from meraki.schemas.sync_v1 import ChangeEntryV1, PullResponseV1, PushResultV1


@dataclass
class BackendTransport:
    """Talks to the backend service in-process (same Python process, its own database)."""

    session_factory: sessionmaker
    user_id: str
    device_id: str

    def push(self, entries: list[ChangeEntryV1]) -> list[PushResultV1]:
        try:
            with self.session_factory() as db:
                return push_entries(db, user_id=self.user_id, device_id=self.device_id, entries=entries)
        except SQLAlchemyError as e:
            raise TransportFailure(f"backend push failed: {type(e).__name__}: {e}") from e

    def pull(self, since: int, limit: int) -> PullResponseV1:
        try:
            with self.session_factory() as db:
                return pull_records(db, user_id=self.user_id, device_id=self.device_id, since=since, limit=limit)
        except SQLAlchemyError as e:
            raise TransportFailure(f"backend pull failed: {type(e).__name__}: {e}") from e
