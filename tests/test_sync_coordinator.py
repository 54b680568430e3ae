from __future__ import annotations

import itertools
import threading

import pytest

from meraki.core.errors import TransportFailure


class FlakyPush:
    """Wraps a transport; runs the real push, then loses the reply `failures` times."""

    def __init__(self, inner, *, failures: int = 1, deliver: bool = True):
        self.inner = inner
        self.failures = failures
        self.deliver = deliver
        self.push_calls = 0

    def push(self, entries):
        self.push_calls += 1
        if self.failures > 0:
            self.failures -= 1
            if self.deliver:
                self.inner.push(entries)
            raise TransportFailure("connection reset while reading response")
        return self.inner.push(entries)

    def pull(self, since, limit):
        return self.inner.pull(since, limit)


class Offline:
    def __init__(self, inner, *, retryable: bool = True):
        self.inner = inner
        self.retryable = retryable
        self.calls = 0

    def push(self, entries):
        self.calls += 1
        raise TransportFailure("backend unreachable", retryable=self.retryable)

    def pull(self, since, limit):
        self.calls += 1
        raise TransportFailure("backend unreachable", retryable=self.retryable)


class Counting:
    def __init__(self, inner):
        self.inner = inner
        self.pushes: list[int] = []
        self.pulls: list[int] = []

    def push(self, entries):
        self.pushes.append(len(entries))
        return self.inner.push(entries)

    def pull(self, since, limit):
        resp = self.inner.pull(since, limit)
        self.pulls.append(len(resp.records))
        return resp


def _backend_heads(backend_db, user_id="u1"):
    from meraki.models.tables import BackendRecord

    with backend_db() as db:
        return {r.record_id: (r.version, r.tombstone) for r in db.query(BackendRecord).filter_by(user_id=user_id)}


def test_create_push_pull_scenario(make_device):
    from meraki.store.types import LOCAL_ONLY, SYNCED

    a = make_device()
    b = make_device()

    r = a.create({"title": "Buy milk"}, "task")
    assert r.version == 1
    assert r.sync_state == LOCAL_ONLY

    report = a.sync()
    assert report.ok and report.pushed == 1
    assert a.get(r.id).sync_state == SYNCED
    assert a.status().pending_change_count == 0

    b.sync()
    got = b.get(r.id)
    assert got.sync_state == SYNCED
    assert got.version == 1
    assert got.payload == a.get(r.id).payload


def test_concurrent_edit_scenario_converges_on_later_writer(make_device, wall):
    a = make_device()
    b = make_device()

    r = a.create({"title": "Buy milk"}, "task")
    a.sync()
    b.sync()

    wall.advance(10)
    a.update(r.id, {"title": "Buy oat milk"})
    wall.advance(10)
    b.update(r.id, {"priority": "high"})

    a.sync()
    report = b.sync()
    assert report.rejected == 1
    assert report.conflicts == 1

    merged = b.get(r.id)
    assert merged.version == 3
    assert merged.payload["title"] == "Buy milk"
    assert merged.payload["priority"] == "high"

    b.sync()
    a.sync()

    final_a, final_b = a.get(r.id), b.get(r.id)
    assert final_a.version == final_b.version == 3
    assert final_a.payload == final_b.payload
    assert final_a.content_hash == final_b.content_hash
    assert a.status().pending_change_count == 0
    assert b.status().pending_change_count == 0


def test_delete_beats_concurrent_edit_in_either_order(make_device, wall):
    for deleter_first in (True, False):
        a = make_device(user_id=f"u-{deleter_first}")
        b = make_device(user_id=f"u-{deleter_first}")
        r = a.create({"title": "Old note", "content": "x"}, "note")
        a.sync()
        b.sync()

        wall.advance(5)
        a.delete(r.id)
        wall.advance(5)
        b.update(r.id, {"content": "edited after the delete"})

        order = [a, b] if deleter_first else [b, a]
        for _ in range(3):
            for device in order:
                device.sync()

        for device in (a, b):
            got = device.store.get(r.id, include_deleted=True)
            assert got.tombstone is True
            assert device.list() == []
        assert a.store.get(r.id, include_deleted=True).version == b.store.get(r.id, include_deleted=True).version


@pytest.mark.parametrize("order", sorted(set(itertools.permutations(["a", "b", "a", "b"]))))
def test_convergence_does_not_depend_on_interleaving(make_device, wall, order):
    devices = {"a": make_device(), "b": make_device()}
    r = devices["a"].create({"title": "shared", "tags": []}, "note")
    devices["a"].sync()
    devices["b"].sync()

    wall.advance(1)
    devices["a"].update(r.id, {"title": "from a", "tags": ["a"]})
    wall.advance(1)
    devices["b"].update(r.id, {"content": "from b"})

    for name in order:
        devices[name].sync()
    # Settle: enough rounds for merges to be pushed and pulled everywhere.
    for _ in range(2):
        devices["a"].sync()
        devices["b"].sync()

    ra, rb = devices["a"].get(r.id), devices["b"].get(r.id)
    assert (ra.version, ra.content_hash) == (rb.version, rb.content_hash)


def test_lost_ack_is_resent_without_duplicates(make_device, backend_db):
    holder = {}

    def wrap(t):
        holder["t"] = FlakyPush(t, failures=1)
        return holder["t"]

    a = make_device(transport_wrapper=wrap, max_attempts=3)
    r = a.create({"title": "Buy milk"}, "task")

    report = a.sync()
    assert report.ok
    assert holder["t"].push_calls == 2
    assert _backend_heads(backend_db) == {r.id: (1, False)}
    assert a.status().pending_change_count == 0

    b = make_device()
    b.sync()
    assert [x.id for x in b.list()] == [r.id]


def test_crash_between_cycles_keeps_entries_and_recovers(make_device, backend_db):
    from meraki.sync.coordinator import ERROR, IDLE

    holder = {}

    def wrap(t):
        holder["t"] = FlakyPush(t, failures=1)
        return holder["t"]

    a = make_device(transport_wrapper=wrap, max_attempts=1)
    r = a.create({"title": "Buy milk"}, "task")

    first = a.sync()
    assert not first.ok
    assert a.status().state == ERROR
    # Delivered, but the acknowledgment was lost: the entry stays queued.
    assert a.status().pending_change_count == 1

    second = a.sync()
    assert second.ok
    assert a.status().state == IDLE
    assert a.status().pending_change_count == 0
    assert _backend_heads(backend_db) == {r.id: (1, False)}


def test_retry_exhaustion_ends_in_error_with_backoff(make_device):
    from meraki.models.tables import AuditLog
    from meraki.sync.coordinator import ERROR

    sleeps: list[float] = []
    a = make_device(
        transport_wrapper=lambda t: Offline(t),
        max_attempts=4,
        backoff_base_s=0.5,
        backoff_max_s=1.5,
        sleep=sleeps.append,
    )
    a.create({"title": "x"}, "note")

    report = a.sync()

    assert report.ok is False
    assert "backend unreachable" in report.error
    assert sleeps == [0.5, 1.0, 1.5]
    status = a.status()
    assert status.state == ERROR
    assert status.pending_change_count == 1
    assert "backend unreachable" in status.last_error

    with a.store.session() as db:
        events = [e.event_type for e in db.query(AuditLog).all()]
    assert events == ["SYNC_FAILED"]


def test_non_retryable_failure_stops_immediately(make_device):
    sleeps: list[float] = []
    holder = {}

    def wrap(t):
        holder["t"] = Offline(t, retryable=False)
        return holder["t"]

    a = make_device(transport_wrapper=wrap, max_attempts=5, sleep=sleeps.append)
    a.create({"title": "x"}, "note")
    report = a.sync()

    assert report.ok is False
    assert holder["t"].calls == 1
    assert sleeps == []


def test_pushes_and_pulls_in_batches(make_device, wall):
    holder = {}

    def wrap(t):
        holder["t"] = Counting(t)
        return holder["t"]

    a = make_device(transport_wrapper=wrap, batch_size=2)
    for i in range(5):
        wall.advance(1)
        a.create({"title": f"r{i}"}, "task")
    a.sync()
    assert holder["t"].pushes == [2, 2, 1]

    b = make_device(transport_wrapper=wrap, batch_size=2)
    b.sync()
    assert holder["t"].pulls == [2, 2, 1]
    assert len(b.list()) == 5


def test_only_latest_version_is_sent_for_a_record(make_device, wall, backend_db):
    holder = {}

    def wrap(t):
        holder["t"] = Counting(t)
        return holder["t"]

    a = make_device(transport_wrapper=wrap)
    r = a.create({"title": "v1"}, "note")
    for i in range(2, 5):
        wall.advance(1)
        a.update(r.id, {"title": f"v{i}"})

    a.sync()
    assert holder["t"].pushes == [1]
    assert _backend_heads(backend_db) == {r.id: (4, False)}
    assert a.status().pending_change_count == 0


def test_trigger_during_running_cycle_is_ignored(make_device):
    entered = threading.Event()
    release = threading.Event()

    class Blocking:
        def __init__(self, inner):
            self.inner = inner

        def push(self, entries):
            entered.set()
            assert release.wait(5)
            return self.inner.push(entries)

        def pull(self, since, limit):
            return self.inner.pull(since, limit)

    a = make_device(transport_wrapper=Blocking)
    a.create({"title": "x"}, "note")

    results = []
    worker = threading.Thread(target=lambda: results.append(a.sync("foreground")))
    worker.start()
    assert entered.wait(5)

    assert a.coordinator.is_running
    assert a.sync("manual") is None

    release.set()
    worker.join(5)
    assert results and results[0].ok


def test_cancel_stops_between_batches(make_device, wall):
    from meraki.sync.coordinator import IDLE

    device = {}

    class CancelAfterFirst:
        def __init__(self, inner):
            self.inner = inner

        def push(self, entries):
            out = self.inner.push(entries)
            device["a"].coordinator.cancel()
            return out

        def pull(self, since, limit):
            return self.inner.pull(since, limit)

    a = make_device(transport_wrapper=CancelAfterFirst, batch_size=1)
    device["a"] = a
    for i in range(3):
        wall.advance(1)
        a.create({"title": f"r{i}"}, "task")

    report = a.sync()
    assert report.cancelled
    assert report.pushed == 1
    assert a.status().state == IDLE
    assert a.status().pending_change_count == 2


def test_unknown_trigger_reason_is_rejected(make_device):
    a = make_device()
    with pytest.raises(ValueError):
        a.sync("whenever")


def test_status_listeners_see_every_transition(make_device):
    a = make_device()
    seen: list[str] = []
    unsubscribe = a.coordinator.subscribe(lambda s: seen.append(s.state))

    a.create({"title": "x"}, "note")
    a.sync()
    assert seen == ["pushing", "pulling", "idle"]

    unsubscribe()
    a.sync()
    assert seen == ["pushing", "pulling", "idle"]
    assert a.status().last_sync_at is not None


def test_rejected_push_marks_record_conflict_until_merged(make_device, wall):
    from meraki.core.errors import RecordInConflict
    from meraki.store.types import CONFLICT, PENDING
    from meraki.sync.coordinator import CycleReport

    a = make_device()
    b = make_device()
    r = a.create({"title": "x"}, "note")
    a.sync()
    b.sync()

    wall.advance(1)
    a.update(r.id, {"title": "a"})
    a.sync()
    wall.advance(1)
    b.update(r.id, {"title": "b"})

    # Push only: stop the cycle before it pulls the winning version.
    b.coordinator._push(CycleReport(reason="manual"))
    assert b.store.get(r.id).sync_state == CONFLICT
    with pytest.raises(RecordInConflict):
        b.update(r.id, {"title": "again"})

    b.sync()
    merged = b.get(r.id)
    assert merged.sync_state == PENDING
    assert merged.version == 3
