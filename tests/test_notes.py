# tests/test_notes.py
"""Tests for activity-level operations: likes, boosts, local notes, fetching."""

import asyncio
import json

import pytest

from ono.errors import ActivityFetchError, UnreachableError
from ono.storage import TYPE_FAIL, TYPE_NOTE


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def notes(node):
    node.store.persist({"id": "abc", "type": "Note", "content": "hello"})
    return node.notes


class TestLikes:
    """Tests for recording inbound likes and boosts."""

    def test_like_writes_likes_file(self, notes):
        notes.record_like({"actor": "Ever", "object": "abc"})
        path = notes.store.likes_path("abc")
        assert path.read_text() == json.dumps({"likes": ["Ever"], "boosts": []}, indent=2)
        assert notes.get_likes_for_note("abc") == {"likes": ["Ever"], "boosts": []}

    def test_like_is_idempotent(self, notes):
        assert notes.record_like({"actor": "Ever", "object": "abc"}) is True
        assert notes.record_like({"actor": "Ever", "object": "abc"}) is False
        assert notes.get_likes_for_note("abc")["likes"] == ["Ever"]
        assert len(notes.notifications) == 1

    def test_undo_like(self, notes):
        notes.record_like({"actor": "Ever", "object": "abc"})
        notes.record_boost({"actor": "Ever", "object": "abc"})
        notes.record_undo_like({"actor": "Ever", "object": "abc"})
        assert notes.get_likes_for_note("abc") == {"likes": [], "boosts": ["Ever"]}

    def test_undo_unknown_like_is_noop(self, notes):
        assert notes.record_undo_like({"actor": "Ever", "object": "abc"}) is False

    def test_undo_boost(self, notes):
        notes.record_boost({"actor": "Ever", "object": "abc"})
        notes.record_undo_boost({"actor": "Ever", "object": "abc"})
        assert notes.get_likes_for_note("abc") == {"likes": [], "boosts": []}

    def test_object_can_be_embedded(self, notes):
        notes.record_like({"actor": {"id": "Ever"}, "object": {"id": "abc", "type": "Note"}})
        assert notes.get_likes_for_note("abc")["likes"] == ["Ever"]


class TestClassification:
    """Tests for reply/mention/direct checks."""

    def test_is_my_post(self, node, account):
        assert node.notes.is_my_post(f"{account.post_prefix}123")
        assert not node.notes.is_my_post("https://bob.example/notes/1")

    def test_is_reply_to_my_post(self, node, account):
        assert node.notes.is_reply_to_my_post({"inReplyTo": f"{account.post_prefix}1"})
        assert not node.notes.is_reply_to_my_post({"inReplyTo": "https://bob.example/notes/1"})
        assert not node.notes.is_reply_to_my_post({})

    def test_is_mention(self, node, account):
        assert node.notes.is_mention({"tag": [{"type": "Mention", "href": account.id}]})
        assert not node.notes.is_mention({"tag": [{"type": "Hashtag", "href": account.id}]})
        assert not node.notes.is_mention({})

    def test_is_direct(self, node, account, bob):
        assert node.notes.is_direct({"to": [account.id], "cc": []})
        assert node.notes.is_direct({"directMessage": True, "to": [bob.id]})
        assert not node.notes.is_direct({"to": [account.id], "cc": [bob.followers]})

    def test_is_reply_to_following(self, node, fediverse, bob, carol):
        fediverse.add({"id": "https://bob.example/notes/1", "attributedTo": bob.id})
        reply = {"inReplyTo": "https://bob.example/notes/1"}
        assert run(node.notes.is_reply_to_following(reply)) is False
        node.social.follow(bob.id)
        assert run(node.notes.is_reply_to_following(reply)) is True


class TestRemoteActivities:
    """Tests for fetching and storing remote activities."""

    def test_get_activity_fetches_and_persists(self, node, fediverse, bob):
        note = fediverse.add({"id": "https://bob.example/notes/1", "type": "Note", "attributedTo": bob.id})
        assert run(node.notes.get_activity(note["id"])) == note
        assert node.store.is_indexed(note["id"])
        run(node.notes.get_activity(note["id"]))
        assert fediverse.requested(note["id"]) == 1

    def test_failed_fetch_is_indexed(self, node):
        url = "https://bob.example/notes/missing"
        with pytest.raises(ActivityFetchError):
            run(node.notes.get_activity(url))
        entry = node.store.from_index(url)
        assert entry.type == TYPE_FAIL
        assert entry.status == 404
        with pytest.raises(UnreachableError):
            run(node.notes.get_activity(url))

    def test_blocked_domain_not_fetched(self, node, fediverse):
        node.social.block("bob.example")
        with pytest.raises(ActivityFetchError):
            run(node.notes.get_activity("https://bob.example/notes/1"))
        assert fediverse.requests == []

    def test_create_activity_reports_new(self, node):
        note = {"id": "https://bob.example/notes/1", "type": "Note"}
        assert node.notes.create_activity(note) is True
        assert node.notes.create_activity(note) is False

    def test_delete_activity_drops_notifications(self, node, bob):
        note = {"id": "https://bob.example/notes/1", "type": "Note"}
        node.notes.create_activity(note)
        node.notifications.add({"type": "Reply", "actor": bob.id, "object": note["id"]})
        node.notifications.add({"type": "Follow", "actor": bob.id})

        assert node.notes.delete_activity(note["id"]) is True
        assert not node.store.is_indexed(note["id"])
        assert [n["notification"]["type"] for n in node.notifications.all()] == ["Follow"]


class TestLocalNotes:
    """Tests for creating, editing and deleting our own notes."""

    def test_create_note(self, node, account, fediverse, bob):
        node.social.add_follower(bob.id)

        async def scenario():
            note = await node.notes.create_note("<p>hi</p>", summary="cw")
            await node.queue.join()
            await node.queue.close()
            return note

        note = run(scenario())
        assert note["id"].startswith(account.post_prefix)
        assert node.store.from_index(note["id"]).type == TYPE_NOTE
        assert node.notes.get_note(note["id"])["content"] == "<p>hi</p>"
        assert note["sensitive"] is True

        [create] = fediverse.delivered_to(bob.inbox)
        assert create["type"] == "Create"
        assert create["object"]["id"] == note["id"]
        assert create["id"] == f"{note['id']}/activity"

    def test_reply_goes_to_parent_author(self, node, account, fediverse, carol):
        parent = fediverse.add({"id": "https://carol.example/notes/1", "type": "Note", "attributedTo": carol.id})

        async def scenario():
            note = await node.notes.create_note("reply", in_reply_to=parent["id"])
            await node.queue.join()
            await node.queue.close()
            return note

        note = run(scenario())
        assert note["inReplyTo"] == parent["id"]
        assert carol.id in note["cc"]
        assert {"type": "Mention", "href": carol.id} in note["tag"]
        assert len(fediverse.delivered_to(carol.inbox)) == 1
        assert node.store.reply_count(parent["id"]) == 1

    def test_update_note(self, node, fediverse, bob):
        node.social.add_follower(bob.id)

        async def scenario():
            note = await node.notes.create_note("first")
            node.notes.update_note(note["id"], "second")
            await node.queue.join()
            await node.queue.close()
            return note

        note = run(scenario())
        assert node.notes.get_note(note["id"])["content"] == "second"
        types = [m["type"] for m in fediverse.delivered_to(bob.inbox)]
        assert sorted(types) == ["Create", "Update"]

    def test_delete_note(self, node, fediverse, bob):
        node.social.add_follower(bob.id)

        async def scenario():
            note = await node.notes.create_note("oops")
            node.notes.delete_note(note["id"])
            await node.queue.join()
            await node.queue.close()
            return note

        note = run(scenario())
        assert not node.store.is_indexed(note["id"])
        deletes = [m for m in fediverse.delivered_to(bob.inbox) if m["type"] == "Delete"]
        assert deletes[0]["object"] == {"id": note["id"], "type": "Tombstone"}

    def test_delete_remote_note_refused(self, node):
        node.store.persist({"id": "https://bob.example/notes/1"})
        with pytest.raises(ValueError):
            node.notes.delete_note("https://bob.example/notes/1")

    def test_outbox_page(self, node, account):
        for day in (1, 2, 3):
            node.store.persist({
                "id": f"{account.post_prefix}{day}",
                "type": "Note",
                "published": f"2024-01-0{day}T00:00:00Z",
            })
        node.store.persist({"id": "https://bob.example/notes/1", "published": "2024-01-04T00:00:00Z"})

        page = node.notes.outbox_page(offset=0, limit=2)
        assert page["total"] == 3
        assert [p["id"] for p in page["posts"]] == [f"{account.post_prefix}3", f"{account.post_prefix}2"]
        assert len(node.notes.outbox_page(offset=2)["posts"]) == 1


class TestOwnLikesAndBoosts:
    """Tests for liking and boosting other people's posts."""

    @pytest.fixture
    def post(self, fediverse, carol):
        return fediverse.add({"id": "https://carol.example/notes/1", "type": "Note", "attributedTo": carol.id})

    def drain(self, node, coro):
        async def scenario():
            result = await coro
            await node.queue.join()
            await node.queue.close()
            return result

        return run(scenario())

    def test_like_and_unlike(self, node, fediverse, carol, post):
        like = self.drain(node, node.notes.like(post["id"]))
        assert node.social.is_liked(post["id"])
        assert fediverse.delivered_to(carol.inbox) == [like]

        undo = self.drain(node, node.notes.unlike(post["id"]))
        assert not node.social.is_liked(post["id"])
        assert undo["object"]["id"] == like["id"]
        assert fediverse.delivered_to(carol.inbox) == [like, undo]

    def test_unlike_without_like(self, node, fediverse, post):
        assert self.drain(node, node.notes.unlike(post["id"])) is None
        assert fediverse.deliveries == []

    def test_boost_and_unboost(self, node, account, fediverse, bob, carol, post):
        node.social.add_follower(bob.id)
        announce = self.drain(node, node.notes.boost(post["id"]))
        assert node.social.is_boosted(post["id"])
        assert announce["cc"] == [account.followers, carol.id]

        undo = self.drain(node, node.notes.unboost(post["id"]))
        assert not node.social.is_boosted(post["id"])
        assert undo["id"] == f"{announce['id']}/undo"
        assert fediverse.delivered_to(bob.inbox) == [announce, undo]
        assert fediverse.delivered_to(carol.inbox) == [announce, undo]
        assert self.drain(node, node.notes.unboost(post["id"])) is None
