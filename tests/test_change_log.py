from __future__ import annotations


def test_peek_batch_is_fifo_and_non_destructive(store, wall):
    a = store.create({"title": "a"}, "note")
    wall.advance(1)
    b = store.create({"title": "b"}, "note")
    wall.advance(1)
    store.update(a.id, {"title": "a2"})

    with store.session() as db:
        first = store.changelog.peek_batch(db, 2)
        again = store.changelog.peek_batch(db, 2)
        assert [(e.record_id, e.version) for e in first] == [(a.id, 1), (b.id, 1)]
        assert [e.seq for e in again] == [e.seq for e in first]

        rest = store.changelog.peek_batch(db, 10, after_seq=first[-1].seq)
        assert [(e.record_id, e.version, e.operation) for e in rest] == [(a.id, 2, "update")]


def test_acknowledge_removes_only_versions_up_to_the_given_one(store, wall):
    r = store.create({"title": "v1"}, "note")
    for i in range(2, 5):
        wall.advance(1)
        store.update(r.id, {"title": f"v{i}"})
    other = store.create({"title": "other"}, "note")

    with store.session() as db:
        removed = store.changelog.acknowledge(db, r.id, 2)
        db.commit()
        assert removed == 2
        left = [(e.record_id, e.version) for e in store.changelog.peek_batch(db, 10)]
        assert left == [(r.id, 3), (r.id, 4), (other.id, 1)]
        assert store.changelog.pending_count(db) == 3
        assert store.changelog.has_pending(db, r.id)


def test_acknowledge_is_idempotent(store):
    r = store.create({"title": "x"}, "note")
    with store.session() as db:
        assert store.changelog.acknowledge(db, r.id, 1) == 1
        assert store.changelog.acknowledge(db, r.id, 1) == 0
        db.commit()
        assert not store.changelog.has_pending(db, r.id)


def test_snapshot_captures_post_operation_state(store):
    r = store.create({"title": "x", "content": "body"}, "note")
    store.delete(r.id)

    with store.session() as db:
        entries = store.changelog.peek_batch(db, 10)
    delete = entries[-1]
    assert delete.operation == "delete"
    assert delete.tombstone is True
    assert delete.snapshot["content"] == "body"
