from __future__ import annotations

from datetime import timedelta


def test_tombstones_are_purged_only_after_every_device_pulled_them(make_device, backend_db, wall):
    from meraki.backend.service import compact_tombstones

    a = make_device()
    b = make_device()
    keep = a.create({"title": "keep me"}, "note")
    r = a.create({"title": "to delete"}, "note")
    a.sync()
    b.sync()

    wall.advance(1)
    a.delete(r.id)
    a.sync()
    later = wall.current + timedelta(days=1)

    # B has not pulled the delete yet.
    assert a.store.compact_tombstones(retention=timedelta(0), now=later) == []
    with backend_db() as db:
        assert compact_tombstones(db, user_id="u1", retention=timedelta(0), now=later) == 0

    b.sync()
    b.sync()
    a.sync()

    assert a.store.compact_tombstones(retention=timedelta(0), now=later) == [r.id]
    with backend_db() as db:
        assert compact_tombstones(db, user_id="u1", retention=timedelta(0), now=later) == 1

    # B learns the new watermark on its next pull.
    assert b.store.get(r.id, include_deleted=True).tombstone
    b.sync()
    assert b.store.compact_tombstones(retention=timedelta(0), now=later) == [r.id]

    for device in (a, b):
        assert [x.id for x in device.store.list(include_deleted=True)] == [keep.id]


def test_retention_window_is_respected(make_device, wall):
    a = make_device()
    r = a.create({"title": "x"}, "note")
    a.sync()
    a.delete(r.id)
    a.sync()
    a.sync()

    assert a.store.compact_tombstones(retention=timedelta(days=30), now=wall.current) == []
    assert a.store.compact_tombstones(retention=timedelta(days=30), now=wall.current + timedelta(days=31)) == [r.id]


def test_unsynced_tombstone_is_never_purged(make_device, wall):
    a = make_device()
    r = a.create({"title": "x"}, "note")
    a.delete(r.id)
    assert a.store.compact_tombstones(retention=timedelta(0), now=wall.current + timedelta(days=365)) == []
    assert a.store.get(r.id, include_deleted=True).tombstone
