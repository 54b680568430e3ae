from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_ts(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(_TS_FORMAT)


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


class MonotonicClock:
    """Wall clock that never hands out the same or an earlier timestamp twice.

    A device clock can step backwards (NTP, manual change); record timestamps on one
    device must not. When the wall clock lags, the last value is bumped by 1µs.
    """

    def __init__(self, now: Callable[[], datetime] = now_utc):
        self._now = now
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def observe(self, ts: str | None) -> None:
        if not ts:
            return
        seen = parse_ts(ts)
        with self._lock:
            if self._last is None or seen > self._last:
                self._last = seen

    def tick(self) -> str:
        with self._lock:
            current = self._now()
            if current.tzinfo is None:
                current = current.replace(tzinfo=timezone.utc)
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return to_ts(current)
