from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session, sessionmaker

from meraki.models.tables import DeviceState
from meraki.util.ids import format_record_id, new_device_id

log = logging.getLogger("device")

DEVICE_ID_KEY = "device_id"
COUNTER_KEY = "record_counter"


class DeviceIdentity:
    """Per-install device id plus a persisted counter for record ids.

    No coordination with other devices: ids are `{device_id}-{counter}`.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._lock = threading.RLock()
        self._device_id: str | None = None

    @property
    def device_id(self) -> str:
        if self._device_id is None:
            with self._lock:
                if self._device_id is None:
                    with self._session_factory() as db:
                        self._device_id = self._load_or_create(db)
        return self._device_id

    def _load_or_create(self, db: Session) -> str:
        row = db.get(DeviceState, DEVICE_ID_KEY)
        if row:
            return row.value
        device_id = new_device_id()
        db.add(DeviceState(key=DEVICE_ID_KEY, value=device_id))
        db.add(DeviceState(key=COUNTER_KEY, value="0"))
        db.commit()
        log.info("Generated device id %s", device_id)
        return device_id

    @contextmanager
    def allocation(self) -> Iterator[None]:
        """Hold the counter until the caller's transaction has committed or rolled back."""
        with self._lock:
            yield

    def next_record_id(self, db: Session) -> str:
        """Allocate the next record id inside the caller's transaction.

        Callers hold `allocation()` from before this call until after their commit.
        The counter only moves forward once the caller commits; a rolled back create
        leaves it untouched, so no id is ever handed out twice.
        """

        device_id = self.device_id
        with self._lock:
            row = db.get(DeviceState, COUNTER_KEY)
            if row is None:
                row = DeviceState(key=COUNTER_KEY, value="0")
                db.add(row)
            counter = int(row.value) + 1
            row.value = str(counter)
            db.flush()
        return format_record_id(device_id, counter)
