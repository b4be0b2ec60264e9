"""Tests for the event coordinator: presence, resumption, grace period and chat.

Connections are RecordingChannel instances, so every assertion is made on
the exact named events each connection received.
"""
import re

import pytest

from eventroom.events.schemas import MessageKind

JOIN_SEQUENCE = ["sessionEstablished", "eventHistory", "newMessage", "participantUpdate"]


def _usernames(participants):
    return [p["username"] for p in participants]


# =============================================================================
# Join
# =============================================================================


class TestJoin:

    @pytest.mark.asyncio
    async def test_first_join_creates_room_and_announces(self, coordinator, make_channel):
        c1 = make_channel()

        sid = await coordinator.join_event(c1.connection_id, "R1", "alice")

        assert c1.names() == JOIN_SEQUENCE
        assert c1.of("sessionEstablished") == [{"sessionId": sid}]

        history = c1.of("eventHistory")[0]
        assert history["messages"] == []
        assert history["participants"] == [
            {"id": c1.connection_id, "username": "alice", "sessionId": sid}
        ]

        notice = c1.of("newMessage")[0]
        assert notice["text"] == "alice has joined the event"
        assert notice["type"] == MessageKind.SYSTEM.value
        assert notice["sender"] == "System"
        assert notice["senderId"] == "system"

        update = c1.of("participantUpdate")[0]
        assert update["type"] == "joined"
        assert update["participant"]["username"] == "alice"
        assert _usernames(update["participants"]) == ["alice"]

        assert [s.model_dump() for s in coordinator.list_summaries()] == [
            {"id": "R1", "participantCount": 1}
        ]

    @pytest.mark.asyncio
    async def test_second_join_gets_history_and_everyone_is_notified(self, coordinator, make_channel):
        c1, c2 = make_channel(), make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")
        await coordinator.send_message(c1.connection_id, "hi all")
        c1.clear()

        await coordinator.join_event(c2.connection_id, "R1", "bob")

        history = c2.of("eventHistory")[0]
        assert [m["text"] for m in history["messages"]] == ["alice has joined the event", "hi all"]
        assert _usernames(history["participants"]) == ["alice", "bob"]

        assert c1.names() == ["newMessage", "participantUpdate"]
        assert c1.texts() == ["bob has joined the event"]
        assert _usernames(c1.of("participantUpdate")[0]["participants"]) == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_join_with_same_username_replaces_older_connection(self, coordinator, make_channel):
        c1, c2 = make_channel(), make_channel()
        sid1 = await coordinator.join_event(c1.connection_id, "R1", "alice")
        sid2 = await coordinator.join_event(c2.connection_id, "R1", "alice")

        assert sid2 == sid1
        room = coordinator.store.get("R1")
        assert list(room.participants) == [c2.connection_id]
        assert coordinator.presence.attachment(c1.connection_id) is None
        assert await coordinator.send_message(c1.connection_id, "ghost") is None

    @pytest.mark.asyncio
    async def test_join_other_room_leaves_previous_one(self, coordinator, make_channel):
        c1, c2 = make_channel(), make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")
        await coordinator.join_event(c2.connection_id, "R1", "bob")
        c2.clear()

        await coordinator.join_event(c1.connection_id, "R2", "alice")

        assert c2.texts() == ["alice has left the event"]
        assert list(coordinator.store.get("R1").participants) == [c2.connection_id]
        assert list(coordinator.store.get("R2").participants) == [c1.connection_id]
        assert coordinator.presence.attachment(c1.connection_id).room_key == "R2"


# =============================================================================
# Resume
# =============================================================================


class TestResume:

    @pytest.mark.asyncio
    async def test_resume_unknown_room_reports_session_error(self, coordinator, make_channel):
        c1 = make_channel()

        result = await coordinator.check_session(c1.connection_id, "never", "alice", "some-id")

        assert result is None
        assert c1.events == [("sessionError", {"message": "Invalid session"})]
        assert len(coordinator.store) == 0
        assert coordinator.sessions.count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_id,username", [("", "alice"), ("R1", "")])
    async def test_resume_requires_room_and_username(self, coordinator, make_channel, event_id, username):
        owner, c2 = make_channel(), make_channel()
        await coordinator.join_event(owner.connection_id, "R1", "owner")
        owner.clear()

        result = await coordinator.check_session(c2.connection_id, event_id, username, None)

        assert result is None
        assert c2.names() == ["sessionError"]
        assert owner.events == []
        assert list(coordinator.store.get("R1").participants) == [owner.connection_id]

    @pytest.mark.asyncio
    async def test_resume_within_grace_period_keeps_identity(self, coordinator, make_channel):
        c1 = make_channel()
        sid = await coordinator.join_event(c1.connection_id, "R1", "alice")
        assert await coordinator.disconnect(c1.connection_id) is True
        c1.clear()

        c2 = make_channel()
        resumed = await coordinator.check_session(c2.connection_id, "R1", "alice", sid)

        assert resumed == sid
        assert c2.names() == JOIN_SEQUENCE
        assert c2.of("sessionEstablished") == [{"sessionId": sid}]
        history = c2.of("eventHistory")[0]
        assert [m["text"] for m in history["messages"]] == ["alice has joined the event"]
        assert [p["id"] for p in history["participants"]] == [c2.connection_id]
        assert c2.texts() == ["alice has reconnected to the event"]
        assert c2.of("participantUpdate")[0]["type"] == "joined"

        # the armed timer fires as a no-op
        await coordinator.supervisor.wait_idle()
        room = coordinator.store.get("R1")
        assert list(room.participants) == [c2.connection_id]
        assert not any("has left" in m.text for m in room.messages)
        assert c1.events == []

    @pytest.mark.asyncio
    async def test_resume_without_prior_session_mints_one(self, coordinator, make_channel):
        owner, c2 = make_channel(), make_channel()
        await coordinator.join_event(owner.connection_id, "R1", "owner")

        sid = await coordinator.check_session(c2.connection_id, "R1", "newcomer", "stale-id")

        assert sid is not None
        assert sid != "stale-id"
        assert coordinator.sessions.lookup("newcomer", "R1").session_id == sid


# =============================================================================
# Leave and grace-period expiry
# =============================================================================


class TestDeparture:

    @pytest.mark.asyncio
    async def test_leave_announces_to_remaining_members_only(self, coordinator, make_channel):
        c1, c2 = make_channel(), make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")
        await coordinator.join_event(c2.connection_id, "R1", "bob")
        c1.clear()
        c2.clear()

        assert await coordinator.leave_event(c1.connection_id) is True

        assert c1.events == []
        assert c2.texts() == ["alice has left the event"]
        update = c2.of("participantUpdate")[0]
        assert update["type"] == "left"
        assert update["participant"]["username"] == "alice"
        assert _usernames(update["participants"]) == ["bob"]
        assert coordinator.sessions.lookup("alice", "R1") is None

    @pytest.mark.asyncio
    async def test_last_leave_removes_room(self, coordinator, make_channel):
        c1 = make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")

        await coordinator.leave_event(c1.connection_id)

        assert "R1" not in coordinator.store
        assert coordinator.list_summaries() == []

    @pytest.mark.asyncio
    async def test_leave_without_join_is_noop(self, coordinator, make_channel):
        c1 = make_channel()
        assert await coordinator.leave_event(c1.connection_id) is False
        assert c1.events == []

    @pytest.mark.asyncio
    async def test_grace_expiry_finalizes_departure(self, coordinator, make_channel):
        c1, c2 = make_channel(), make_channel()
        sid = await coordinator.join_event(c1.connection_id, "R1", "alice")
        await coordinator.join_event(c2.connection_id, "R1", "bob")
        c2.clear()

        await coordinator.disconnect(c1.connection_id)
        assert c2.events == []

        await coordinator.supervisor.wait_idle()

        assert c2.texts() == ["alice has left the event"]
        assert _usernames(c2.of("participantUpdate")[0]["participants"]) == ["bob"]
        # timeout does not drop the session
        session = coordinator.sessions.lookup("alice", "R1")
        assert session is not None
        assert session.session_id == sid

        c3 = make_channel()
        assert await coordinator.join_event(c3.connection_id, "R1", "alice") == sid
        assert c3.of("sessionEstablished") == [{"sessionId": sid}]

    @pytest.mark.asyncio
    async def test_grace_expiry_of_sole_participant_removes_room(self, coordinator, make_channel):
        c1 = make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")

        await coordinator.disconnect(c1.connection_id)
        assert [s.id for s in coordinator.list_summaries()] == ["R1"]

        await coordinator.supervisor.wait_idle()

        assert coordinator.list_summaries() == []

    @pytest.mark.asyncio
    async def test_disconnect_without_room_arms_nothing(self, coordinator, make_channel):
        c1 = make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")
        await coordinator.leave_event(c1.connection_id)

        assert await coordinator.disconnect(c1.connection_id) is False
        assert coordinator.supervisor.pending() == []


# =============================================================================
# Chat
# =============================================================================


class TestChat:

    @pytest.mark.asyncio
    async def test_chat_is_logged_then_broadcast(self, coordinator, make_channel):
        c1, c2 = make_channel(), make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")
        await coordinator.join_event(c2.connection_id, "R1", "bob")
        c1.clear()
        c2.clear()

        message = await coordinator.send_message(c1.connection_id, "hello")

        assert message.sender == "alice"
        assert message.senderId == c1.connection_id
        assert message.type == MessageKind.CHAT
        assert coordinator.store.get("R1").messages[-1] == message
        assert c1.of("newMessage") == c2.of("newMessage") == [message.model_dump(mode="json")]

        stamp = c2.of("newMessage")[0]["timestamp"]
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", stamp)

    @pytest.mark.asyncio
    async def test_log_order_equals_delivery_order(self, coordinator, make_channel):
        c1, c2 = make_channel(), make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")
        await coordinator.join_event(c2.connection_id, "R1", "bob")

        for i in range(5):
            sender = c1 if i % 2 == 0 else c2
            await coordinator.send_message(sender.connection_id, f"m{i}")

        room = coordinator.store.get("R1")
        logged = [m.id for m in room.messages]
        assert logged == sorted(logged)
        # c2 joined after alice's notice; everything from bob's notice on is shared
        tail = [m.id for m in room.messages[1:]]
        assert [m["id"] for m in c2.of("newMessage")] == tail
        assert [m["id"] for m in c1.of("newMessage")] == logged

    @pytest.mark.asyncio
    async def test_rooms_are_isolated(self, coordinator, make_channel):
        c1, c2 = make_channel(), make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")
        await coordinator.join_event(c2.connection_id, "R2", "bob")
        c2.clear()

        await coordinator.send_message(c1.connection_id, "only for R1")

        assert c2.events == []
        assert "only for R1" in c1.texts()
        assert len(coordinator.store.get("R2").messages) == 1

    @pytest.mark.asyncio
    async def test_chat_without_room_is_noop(self, coordinator, make_channel):
        c1 = make_channel()
        assert await coordinator.send_message(c1.connection_id, "anyone?") is None
        assert c1.events == []

    @pytest.mark.asyncio
    async def test_blank_chat_is_ignored(self, coordinator, make_channel):
        c1 = make_channel()
        await coordinator.join_event(c1.connection_id, "R1", "alice")
        assert await coordinator.send_message(c1.connection_id, "   ") is None
        assert len(coordinator.store.get("R1").messages) == 1


# =============================================================================
# Invariants across sequences
# =============================================================================


@pytest.mark.asyncio
async def test_session_id_stable_until_leave(coordinator, make_channel):
    keeper = make_channel()
    await coordinator.join_event(keeper.connection_id, "R1", "keeper")

    c1 = make_channel()
    sid = await coordinator.join_event(c1.connection_id, "R1", "alice")

    c2 = make_channel()
    assert await coordinator.check_session(c2.connection_id, "R1", "alice", sid) == sid
    c3 = make_channel()
    assert await coordinator.join_event(c3.connection_id, "R1", "alice") == sid
    await coordinator.disconnect(c3.connection_id)
    c4 = make_channel()
    assert await coordinator.check_session(c4.connection_id, "R1", "alice", sid) == sid

    await coordinator.leave_event(c4.connection_id)

    c5 = make_channel()
    assert await coordinator.join_event(c5.connection_id, "R1", "alice") != sid


@pytest.mark.asyncio
async def test_usernames_unique_and_rooms_nonempty_after_every_handler(coordinator, make_channel):
    channels = [make_channel() for _ in range(4)]
    a, b, c, d = (ch.connection_id for ch in channels)

    steps = [
        coordinator.join_event(a, "R1", "alice"),
        coordinator.join_event(b, "R1", "bob"),
        coordinator.check_session(c, "R1", "alice", None),
        coordinator.join_event(d, "R1", "bob"),
        coordinator.join_event(a, "R2", "alice"),
        coordinator.leave_event(c),
        coordinator.disconnect(d),
        coordinator.leave_event(b),
    ]
    for step in steps:
        await step
        for summary in coordinator.list_summaries():
            room = coordinator.store.get(summary.id)
            names = [p.username for p in room.participants.values()]
            assert len(names) == len(set(names))
            assert summary.participantCount >= 1

    await coordinator.supervisor.wait_idle()
    assert [s.id for s in coordinator.list_summaries()] == ["R2"]


@pytest.mark.asyncio
async def test_debug_snapshot_counts_sessions(coordinator, make_channel):
    c1, c2 = make_channel(), make_channel()
    await coordinator.join_event(c1.connection_id, "R1", "alice")
    await coordinator.join_event(c2.connection_id, "R2", "bob")

    snapshot = coordinator.debug_snapshot()

    assert {room.id: room.messageCount for room in snapshot.events} == {"R1": 1, "R2": 1}
    assert snapshot.sessionCount == 2
    assert snapshot.userSessionCount == 2
