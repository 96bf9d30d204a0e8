"""
Tests for snapshot persistence and the mutation coordinator.

Tests cover:
- Empty initialization and save/load
- Forward compatibility with missing tables
- Fallback on an unreadable database
- Rollback when a save fails
- Restart reproduces query results
- Serialized concurrent mutations
"""

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import text

from wegetchat.entities import Snapshot, User
from wegetchat.errors import ConflictError, PersistenceError
from wegetchat.storage import SnapshotStore


class TestSnapshotStore:
    """Test the store directly."""

    def test_fresh_database_initialized_empty(self, store):
        snapshot = store.load()

        assert snapshot == Snapshot()
        assert store._path.exists()
        assert store.check_health() is True

    def test_save_and_load(self, store, database_url):
        store.load()
        snapshot = Snapshot(users=[
            User(username="Bob", username_lower="bob", password_hash="h1"),
            User(username="alice", username_lower="alice", password_hash="h2"),
        ])
        store.save(snapshot)

        loaded = SnapshotStore(database_url).load()

        assert [u.username for u in loaded.users] == ["Bob", "alice"]
        assert loaded == snapshot

    def test_missing_table_loads_empty(self, store, database_url):
        store.load()
        store.save(Snapshot(users=[User(username="bob", username_lower="bob", password_hash="h")]))
        with store.engine.begin() as conn:
            conn.execute(text("DROP TABLE notifications"))
        assert store.check_health() is False

        reopened = SnapshotStore(database_url)
        loaded = reopened.load()

        assert len(loaded.users) == 1
        assert loaded.notifications == []
        assert reopened.check_health() is True
        reopened.close()

    def test_unreadable_database_falls_back_to_empty(self, database_url, tmp_path):
        path = tmp_path / "data" / "wegetchat.db"
        path.parent.mkdir(parents=True)
        path.write_bytes(b"this is not a sqlite database" * 100)

        store = SnapshotStore(database_url)
        snapshot = store.load()

        assert snapshot == Snapshot()
        assert len(list(path.parent.glob("wegetchat.db.corrupt-*"))) == 1
        assert store.check_health() is True
        store.close()


class TestRollback:
    """Test the coordinator's behavior when a save fails."""

    def test_failed_save_rolls_back(self, service, users, monkeypatch):
        service.add_friend(users["alice"], users["bob"])
        conversation_id = service.list_conversations(users["alice"])[0].id
        before = service.coordinator.snapshot

        def failing_save(snapshot):
            raise PersistenceError()

        monkeypatch.setattr(service.store, "save", failing_save)

        with pytest.raises(PersistenceError) as exc:
            service.send_message(users["alice"], conversation_id, body="lost")

        assert exc.value.message == "Failed to save changes"
        assert service.coordinator.snapshot is before
        assert service.get_messages(users["alice"], conversation_id) == []
        assert len(service.list_notifications(users["bob"])) == 1

    def test_rejected_mutation_publishes_nothing(self, service, users):
        before = service.coordinator.snapshot

        with pytest.raises(ConflictError):
            service.add_friend(users["alice"], users["alice"])

        assert service.coordinator.snapshot is before


class TestRestart:
    """Test that a reload reproduces the same state."""

    def test_queries_identical_after_restart(self, make_service):
        service = make_service()
        alice = service.register("alice", "1234")
        bob = service.register("bob", "1234")
        service.add_friend(alice.id, bob.id)
        conversation_id = service.list_conversations(alice.id)[0].id
        service.send_message(alice.id, conversation_id, body="hi")
        service.send_message(bob.id, conversation_id, body="hello")
        service.mark_conversation_read(bob.id, conversation_id)
        service.mark_all_notifications_read(alice.id)

        def observe(svc):
            return [
                [s.model_dump() for s in svc.list_conversations(user.id)]
                + [m.model_dump() for m in svc.get_messages(user.id, conversation_id)]
                + [n.model_dump() for n in svc.list_notifications(user.id)]
                for user in (alice, bob)
            ]

        expected = observe(service)
        restarted = make_service()

        assert observe(restarted) == expected
        assert restarted.verify_credential("alice", "1234").id == alice.id


class TestConcurrency:
    """Test that concurrent mutations are serialized."""

    def test_concurrent_sends_all_applied(self, service, users):
        service.add_friend(users["alice"], users["bob"])
        conversation_id = service.list_conversations(users["alice"])[0].id

        def send(i):
            sender = users["alice"] if i % 2 else users["bob"]
            return service.send_message(sender, conversation_id, body=f"m{i}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(send, range(40)))

        messages = service.get_messages(users["alice"], conversation_id)
        assert len(messages) == 40
        assert len({m.id for m in messages}) == 40

    def test_concurrent_add_friend_creates_one_conversation(self, service, users):
        def befriend(i):
            a, b = (users["alice"], users["bob"]) if i % 2 else (users["bob"], users["alice"])
            return service.add_friend(a, b)

        with ThreadPoolExecutor(max_workers=8) as pool:
            created = list(pool.map(befriend, range(20)))

        snapshot = service.coordinator.snapshot
        assert created.count(True) == 1
        assert len(snapshot.conversations) == 1
        assert len(snapshot.friendships) == 2
        assert len(snapshot.notifications) == 1
