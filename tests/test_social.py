# tests/test_social.py
"""Tests for followers, blocks, notifications and direct messages."""

import pytest

from ono.social import DirectMessages, NotificationLog, SocialGraph
from ono.storage import Store


@pytest.fixture
def store(data_dir):
    return Store(data_dir, local_prefix="https://local.example/m/")


@pytest.fixture
def social(store):
    return SocialGraph(store, blocked_domains=["spam.example"])


class TestFollowers:
    """Tests for the follower and following lists."""

    def test_insertion_order_without_duplicates(self, social):
        assert social.add_follower("https://b.example/u/1") is True
        assert social.add_follower("https://a.example/u/2") is True
        assert social.add_follower("https://b.example/u/1") is False
        assert social.get_followers() == ["https://b.example/u/1", "https://a.example/u/2"]

    def test_remove_follower(self, social):
        social.add_follower("https://b.example/u/1")
        assert social.remove_follower("https://b.example/u/1") is True
        assert social.remove_follower("https://b.example/u/1") is False
        assert not social.is_follower("https://b.example/u/1")

    def test_persisted(self, social, store, data_dir):
        social.follow("https://b.example/u/1")
        fresh = SocialGraph(Store(data_dir, local_prefix=store.local_prefix))
        assert fresh.is_following("https://b.example/u/1")
        assert (data_dir / "following.json").exists()

    def test_unfollow(self, social):
        social.follow("https://b.example/u/1")
        social.unfollow("https://b.example/u/1")
        assert social.get_following() == []
        assert not social.is_following(None)


class TestBlocks:
    """Tests for is_blocked."""

    def test_configured_domain(self, social):
        assert social.is_blocked("https://spam.example/u/x")

    def test_blocked_actor(self, social):
        social.block("https://b.example/u/1")
        assert social.is_blocked("https://b.example/u/1")
        assert not social.is_blocked("https://b.example/u/2")

    def test_blocked_domain(self, social):
        social.block("b.example")
        assert social.is_blocked("https://b.example/notes/9")
        social.unblock("b.example")
        assert not social.is_blocked("https://b.example/notes/9")


class TestOwnReactions:
    """Tests for our own likes and boosts."""

    def test_like_and_forget(self, social):
        social.record_my_like("https://b.example/n/1", "https://local.example/u/alice/likes/1")
        assert social.is_liked("https://b.example/n/1")
        assert social.forget_my_like("https://b.example/n/1") == "https://local.example/u/alice/likes/1"
        assert not social.is_liked("https://b.example/n/1")
        assert social.forget_my_like("https://b.example/n/1") is None

    def test_relike_replaces_record(self, social, store):
        social.record_my_boost("https://b.example/n/1", "first")
        social.record_my_boost("https://b.example/n/1", "second")
        assert store.read_json(social.data_dir / "boosts.json") == [
            {"id": "second", "activityId": "https://b.example/n/1"},
        ]


class TestNotificationLog:
    """Tests for NotificationLog."""

    def test_newest_first(self, store):
        log = NotificationLog(store)
        log.add({"type": "Follow", "actor": "a"})
        log.add({"type": "Like", "actor": "b"})
        assert [n["notification"]["type"] for n in log.all()] == ["Like", "Follow"]
        assert all("time" in n for n in log.all())

    def test_since(self, store):
        log = NotificationLog(store)
        log.add({"type": "Follow"})
        assert log.since(0)
        assert log.since(log.all()[0]["time"]) == []

    def test_remove_for_object(self, store):
        log = NotificationLog(store)
        log.add({"type": "Reply", "object": "x"})
        log.add({"type": "Mention", "object": "x"})
        log.add({"type": "Reply", "object": "y"})
        log.add({"type": "Like", "object": "x"})
        assert log.remove_for_object("x") == 2
        assert len(log) == 2


class TestDirectMessages:
    """Tests for DirectMessages."""

    def test_thread_per_correspondent(self, store, data_dir):
        dms = DirectMessages(store)
        dms.accept({"id": "m1"}, "https://b.example/u/bob")
        dms.accept({"id": "m1"}, "https://b.example/u/bob")
        dms.accept({"id": "m2"}, "https://c.example/u/carol")
        assert dms.get_thread("https://b.example/u/bob") == [{"id": "m1"}]
        assert (data_dir / "dm" / "bob@b.example.json").exists()
        assert dms.unread_count() == 2

    def test_mark_read(self, store):
        dms = DirectMessages(store)
        dms.accept({"id": "m1"}, "https://b.example/u/bob")
        dms.mark_read("https://b.example/u/bob")
        assert dms.unread_count() == 0

    def test_outgoing_is_read(self, store):
        dms = DirectMessages(store)
        dms.accept({"id": "m1"}, "https://b.example/u/bob", incoming=False)
        assert dms.unread_count() == 0
