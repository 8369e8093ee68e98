"""
Tests for message endpoints and the message log.

Tests cover:
- Appending, validation and replies
- Delivery/read transitions (monotonic, idempotent) and unread counters
- Group read state from receipts
- Reactions
- Delete for everyone (tombstones) and delete for me (per-viewer hiding)
- Pagination and ordering
- Last-message recomputation
"""

from sqlalchemy import update

from conftest import auth, run_concurrently
from samvad import conversations, messages, summaries, users
from samvad.models import Conversation, ConversationParticipant, MessageReceipt


def direct(client, user_id: int, other_id: int) -> int:
    response = client.post(
        "/api/conversations/create",
        json={"participant_id": other_id},
        headers=auth(user_id),
    )
    return response.json()["data"]["id"]


def group(client, creator_id: int, participants: list) -> int:
    response = client.post(
        "/api/conversations/create",
        json={"type": "group", "participants": participants},
        headers=auth(creator_id),
    )
    return response.json()["data"]["id"]


def send(client, user_id: int, conversation_id: int, content: str = "hi", **extra):
    return client.post(
        f"/api/conversations/{conversation_id}/messages",
        json={"content": content, **extra},
        headers=auth(user_id),
    )


def unread(client, user_id: int, conversation_id: int) -> int:
    response = client.get(f"/api/conversations/{conversation_id}", headers=auth(user_id))
    return response.json()["data"]["unread_count"]


def listing(client, user_id: int, conversation_id: int, **params):
    response = client.get(
        f"/api/conversations/{conversation_id}/messages", params=params, headers=auth(user_id)
    )
    assert response.status_code == 200
    return response.json()["data"]


class TestFirstContactScenario:
    """Alice adds Bob, messages him, Bob reads it."""

    def test_add_message_read(self, client, people):
        alice, bob = people["alice"], people["bob"]

        contact = client.post(
            "/api/contacts/add", json={"contact_user_id": bob}, headers=auth(alice)
        ).json()["data"]
        assert (contact["owner_id"], contact["contact_user_id"], contact["blocked"]) == (alice, bob, False)

        conversation_id = direct(client, alice, bob)
        response = send(client, alice, conversation_id, "hi")

        assert response.status_code == 201
        message = response.json()["data"]
        assert message["status"] == "sent"
        assert message["sender_id"] == alice
        assert unread(client, bob, conversation_id) == 1
        assert unread(client, alice, conversation_id) == 0

        read = client.put(f"/api/messages/{message['id']}/read", headers=auth(bob))

        assert read.status_code == 200
        assert read.json()["data"]["status"] == "read"
        assert [r["user_id"] for r in read.json()["data"]["read_by"]] == [bob]
        assert unread(client, bob, conversation_id) == 0


class TestAppendMessage:
    """Test message creation and payload validation."""

    def test_text_requires_content(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])

        response = send(client, people["alice"], conversation_id, "   ")

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_media_requires_url(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])

        response = send(client, people["alice"], conversation_id, "caption", kind="image")

        assert response.status_code == 400

    def test_invalid_kind(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])

        response = send(client, people["alice"], conversation_id, "x", kind="sticker")

        assert response.status_code == 400

    def test_media_message(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])

        response = send(
            client,
            people["alice"],
            conversation_id,
            None,
            kind="image",
            media_url="https://cdn.example.com/cat.png",
            media_type="image/png",
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["kind"] == "image"
        assert data["media_url"] == "https://cdn.example.com/cat.png"

    def test_group_message_counts_unread_for_everyone_else(self, client, people):
        group_id = group(client, people["alice"], [people["bob"], people["carol"]])

        send(client, people["bob"], group_id, "hello all")

        assert unread(client, people["alice"], group_id) == 1
        assert unread(client, people["carol"], group_id) == 1
        assert unread(client, people["bob"], group_id) == 0

    def test_unknown_conversation(self, client, people):
        response = send(client, people["alice"], 999, "anyone?")

        assert response.status_code == 404


class TestReplies:
    """Test reply references."""

    def test_reply_in_same_conversation(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        original = send(client, people["alice"], conversation_id, "question").json()["data"]

        response = send(client, people["bob"], conversation_id, "answer", reply_to=original["id"])

        assert response.status_code == 201
        assert response.json()["data"]["reply_to"] == original["id"]

    def test_reply_across_conversations_rejected(self, client, people):
        first = direct(client, people["alice"], people["bob"])
        second = direct(client, people["alice"], people["carol"])
        elsewhere = send(client, people["alice"], second, "other").json()["data"]

        response = send(client, people["alice"], first, "reply", reply_to=elsewhere["id"])

        assert response.status_code == 400
        assert response.json()["message"] == "Reply target must be a message in the same conversation"

    def test_reply_to_missing_message_rejected(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])

        response = send(client, people["alice"], conversation_id, "reply", reply_to=999)

        assert response.status_code == 400


class TestStatusTransitions:
    """Test delivery and read state."""

    def test_mark_delivered(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]

        response = client.put(f"/api/messages/{message['id']}/delivered", headers=auth(people["bob"]))

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "delivered"

    def test_delivered_after_read_does_not_regress(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]
        client.put(f"/api/messages/{message['id']}/read", headers=auth(people["bob"]))

        response = client.put(f"/api/messages/{message['id']}/delivered", headers=auth(people["bob"]))

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "read"

    def test_mark_read_is_idempotent(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        first = send(client, people["alice"], conversation_id, "one").json()["data"]
        send(client, people["alice"], conversation_id, "two")
        assert unread(client, people["bob"], conversation_id) == 2

        client.put(f"/api/messages/{first['id']}/read", headers=auth(people["bob"]))
        response = client.put(f"/api/messages/{first['id']}/read", headers=auth(people["bob"]))

        assert len(response.json()["data"]["read_by"]) == 1
        assert unread(client, people["bob"], conversation_id) == 1

    def test_sender_reading_own_message_is_noop(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]

        response = client.put(f"/api/messages/{message['id']}/read", headers=auth(people["alice"]))

        assert response.json()["data"]["status"] == "sent"
        assert response.json()["data"]["read_by"] == []

    def test_outsider_cannot_mark_read(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]

        response = client.put(f"/api/messages/{message['id']}/read", headers=auth(people["carol"]))

        assert response.status_code == 404

    def test_unread_counter_never_goes_negative(self, db, client):
        alice = users.create_user(db, "Alice", "alice@example.com")
        bob = users.create_user(db, "Bob", "bob@example.com")
        conversation, _ = conversations.find_or_create_direct(db, alice.id, bob.id)
        message = messages.append_message(db, alice.id, conversation.id, content="hi")
        # counter already consumed elsewhere
        db.execute(update(ConversationParticipant).values(unread_count=0))
        db.commit()

        messages.mark_read(db, bob.id, message.id)

        db.expire_all()
        conversation = conversations.get_conversation(db, bob.id, conversation.id)
        assert summaries.summarize(db, conversation, bob.id).unread_count == 0

    def test_repeat_read_keeps_single_receipt(self, db, client):
        alice = users.create_user(db, "Alice", "alice@example.com")
        bob = users.create_user(db, "Bob", "bob@example.com")
        conversation, _ = conversations.find_or_create_direct(db, alice.id, bob.id)
        message = messages.append_message(db, alice.id, conversation.id, content="hi")
        messages.mark_read(db, bob.id, message.id)

        message = messages.mark_read(db, bob.id, message.id)

        assert [receipt.user_id for receipt in message.receipts] == [bob.id]
        assert db.query(MessageReceipt).count() == 1

    def test_concurrent_reads_decrement_once(self, client, people):
        alice, bob = people["alice"], people["bob"]
        conversation_id = direct(client, alice, bob)
        first = send(client, alice, conversation_id, "one").json()["data"]["id"]
        send(client, alice, conversation_id, "two")

        run_concurrently(6, lambda session, index: messages.mark_read(session, bob, first))

        assert unread(client, bob, conversation_id) == 1
        page = listing(client, bob, conversation_id)
        assert [m["status"] for m in page["data"]] == ["read", "sent"]
        assert [r["user_id"] for r in page["data"][0]["read_by"]] == [bob]


class TestGroupReadState:
    """Group status follows receipts from every other participant."""

    def test_read_only_after_everyone_read(self, client, people):
        group_id = group(client, people["alice"], [people["bob"], people["carol"]])
        message = send(client, people["alice"], group_id, "all hands").json()["data"]

        after_bob = client.put(f"/api/messages/{message['id']}/read", headers=auth(people["bob"]))
        assert after_bob.json()["data"]["status"] == "delivered"

        after_carol = client.put(f"/api/messages/{message['id']}/read", headers=auth(people["carol"]))
        data = after_carol.json()["data"]
        assert data["status"] == "read"
        assert {r["user_id"] for r in data["read_by"]} == {people["bob"], people["carol"]}


class TestReactions:
    """Test reaction upserts."""

    def test_react_and_replace(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]

        client.put(f"/api/messages/{message['id']}/reaction", json={"emoji": "👍"}, headers=auth(people["bob"]))
        response = client.put(
            f"/api/messages/{message['id']}/reaction", json={"emoji": "❤️"}, headers=auth(people["bob"])
        )

        assert response.status_code == 200
        assert response.json()["data"]["reactions"] == [{"user_id": people["bob"], "emoji": "❤️"}]

    def test_one_reaction_per_user(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]

        client.put(f"/api/messages/{message['id']}/reaction", json={"emoji": "😂"}, headers=auth(people["bob"]))
        response = client.put(
            f"/api/messages/{message['id']}/reaction", json={"emoji": "🔥"}, headers=auth(people["alice"])
        )

        reactions = response.json()["data"]["reactions"]
        assert {(r["user_id"], r["emoji"]) for r in reactions} == {
            (people["bob"], "😂"),
            (people["alice"], "🔥"),
        }

    def test_empty_emoji_rejected(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]

        response = client.put(
            f"/api/messages/{message['id']}/reaction", json={"emoji": ""}, headers=auth(people["bob"])
        )

        assert response.status_code == 400

    def test_cannot_react_to_tombstone(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]
        client.delete(f"/api/messages/{message['id']}/everyone", headers=auth(people["alice"]))

        response = client.put(
            f"/api/messages/{message['id']}/reaction", json={"emoji": "👍"}, headers=auth(people["bob"])
        )

        assert response.status_code == 400


class TestDeleteForEveryone:
    """Test tombstoning."""

    def test_only_sender_may_delete(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]

        response = client.delete(f"/api/messages/{message['id']}/everyone", headers=auth(people["bob"]))

        assert response.status_code == 403

    def test_tombstone_is_listed_redacted(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        first = send(client, people["alice"], conversation_id, "secret").json()["data"]
        second = send(client, people["bob"], conversation_id, "re: secret", reply_to=first["id"]).json()["data"]

        response = client.delete(f"/api/messages/{first['id']}/everyone", headers=auth(people["alice"]))
        assert response.status_code == 200

        for viewer in (people["alice"], people["bob"]):
            page = listing(client, viewer, conversation_id)
            assert [m["id"] for m in page["data"]] == [first["id"], second["id"]]
            tombstone = page["data"][0]
            assert tombstone["deleted"] is True
            assert tombstone["content"] is None
            assert tombstone["media_url"] is None
            assert page["data"][1]["reply_to"] == first["id"]

    def test_media_is_cleared(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(
            client,
            people["alice"],
            conversation_id,
            None,
            kind="file",
            media_url="https://cdn.example.com/report.pdf",
        ).json()["data"]

        response = client.delete(f"/api/messages/{message['id']}/everyone", headers=auth(people["alice"]))

        data = response.json()["data"]
        assert data["media_url"] is None
        assert data["kind"] == "file"


class TestDeleteForMe:
    """Test per-viewer hiding."""

    def test_hidden_only_for_requester(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        kept = send(client, people["alice"], conversation_id, "keep").json()["data"]
        hidden = send(client, people["alice"], conversation_id, "hide").json()["data"]

        response = client.delete(f"/api/messages/{hidden['id']}/me", headers=auth(people["bob"]))
        assert response.status_code == 200

        bob_page = listing(client, people["bob"], conversation_id)
        alice_page = listing(client, people["alice"], conversation_id)
        assert [m["id"] for m in bob_page["data"]] == [kept["id"]]
        assert bob_page["total"] == 1
        assert [m["id"] for m in alice_page["data"]] == [kept["id"], hidden["id"]]

    def test_repeat_is_harmless(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]

        client.delete(f"/api/messages/{message['id']}/me", headers=auth(people["bob"]))
        response = client.delete(f"/api/messages/{message['id']}/me", headers=auth(people["bob"]))

        assert response.status_code == 200
        assert listing(client, people["bob"], conversation_id)["data"] == []

    def test_outsider_gets_not_found(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        message = send(client, people["alice"], conversation_id).json()["data"]

        response = client.delete(f"/api/messages/{message['id']}/me", headers=auth(people["carol"]))

        assert response.status_code == 404

    def test_summary_skips_hidden_last_message(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        earlier = send(client, people["alice"], conversation_id, "earlier").json()["data"]
        latest = send(client, people["alice"], conversation_id, "latest").json()["data"]
        client.delete(f"/api/messages/{latest['id']}/me", headers=auth(people["bob"]))

        bob_view = client.get(f"/api/conversations/{conversation_id}", headers=auth(people["bob"])).json()["data"]
        alice_view = client.get(f"/api/conversations/{conversation_id}", headers=auth(people["alice"])).json()["data"]

        assert bob_view["last_message"]["id"] == earlier["id"]
        assert alice_view["last_message"]["id"] == latest["id"]


class TestListMessages:
    """Test ordering and pagination."""

    def test_oldest_first_with_pagination(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])
        ids = [send(client, people["alice"], conversation_id, f"m{i}").json()["data"]["id"] for i in range(5)]

        page = listing(client, people["bob"], conversation_id, limit=2, offset=2)

        assert [m["id"] for m in page["data"]] == ids[2:4]
        assert page["total"] == 5
        assert page["limit"] == 2
        assert page["offset"] == 2

    def test_default_limit(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])

        page = listing(client, people["alice"], conversation_id)

        assert page == {"data": [], "total": 0, "limit": 50, "offset": 0}

    def test_limit_bounds(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])

        for params in ({"limit": 0}, {"limit": 101}, {"offset": -1}):
            response = client.get(
                f"/api/conversations/{conversation_id}/messages", params=params, headers=auth(people["alice"])
            )
            assert response.status_code == 400

    def test_outsider_cannot_list(self, client, people):
        conversation_id = direct(client, people["alice"], people["bob"])

        response = client.get(f"/api/conversations/{conversation_id}/messages", headers=auth(people["carol"]))

        assert response.status_code == 404


class TestLastMessagePointer:
    """The cached pointer is recomputed from the log when it is unusable."""

    def test_stale_pointer_recomputed(self, db, client):
        alice = users.create_user(db, "Alice", "alice@example.com")
        bob = users.create_user(db, "Bob", "bob@example.com")
        conversation, _ = conversations.find_or_create_direct(db, alice.id, bob.id)
        messages.append_message(db, alice.id, conversation.id, content="first")
        latest = messages.append_message(db, bob.id, conversation.id, content="second")

        db.execute(
            update(Conversation).where(Conversation.id == conversation.id).values(last_message_id=9999)
        )
        db.commit()

        conversation = conversations.get_conversation(db, alice.id, conversation.id)
        summary = summaries.summarize(db, conversation, alice.id)

        assert summary.last_message.id == latest.id
        assert summary.last_message.content == "second"

    def test_visibility_is_per_viewer(self, db, client):
        alice = users.create_user(db, "Alice", "alice@example.com")
        bob = users.create_user(db, "Bob", "bob@example.com")
        conversation, _ = conversations.find_or_create_direct(db, alice.id, bob.id)
        message = messages.append_message(db, alice.id, conversation.id, content="hi")

        messages.delete_for_me(db, bob.id, message.id)
        db.refresh(message)

        assert messages.is_visible_to(message, alice.id)
        assert not messages.is_visible_to(message, bob.id)
