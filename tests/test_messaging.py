"""Tests for chat messages and call invitations."""

import pytest

from expertmeet.errors import CallProvisioningError, InvalidRequest, QuotaExceeded
from expertmeet.messaging import CALL_INVITATION_TEXT, MessagingService, invitation_room


@pytest.fixture
def messaging(repos, meter, leads, hub):
    return MessagingService(repos, meter, leads, channel=hub, room_factory=lambda: "room_test_1")


@pytest.fixture
def inbox(hub):
    """Collect realtime payloads delivered to a user's channel."""
    received: dict[str, list[dict]] = {}

    async def listen(user_id: str) -> list[dict]:
        bucket = received.setdefault(user_id, [])

        async def handler(payload: dict) -> None:
            bucket.append(payload)

        await hub.subscribe(f"user:{user_id}", handler)
        return bucket

    return listen


class TestSendMessage:
    """Tests for MessagingService.send_message()."""

    @pytest.mark.asyncio
    async def test_client_message_counts_and_creates_lead(self, messaging, meter, repos):
        message = await messaging.send_message("user-client-1", "user-provider-1", "Do you review contracts?")
        assert message.read is False
        period = meter.get_or_create_period("provider-1")
        assert period.chats_used == 1
        assert period.unique_chat_partners == ["user-client-1"]
        leads = repos.leads.list_by_provider("provider-1")
        assert len(leads) == 1
        assert leads[0].message == "Do you review contracts?"

    @pytest.mark.asyncio
    async def test_provider_reply_charges_provider(self, messaging, meter, repos):
        await messaging.send_message("user-provider-1", "user-client-1", "Hello!")
        period = meter.get_or_create_period("provider-1")
        assert period.chats_used == 1
        assert period.unique_chat_partners == ["user-client-1"]
        assert repos.leads.list_by_provider("provider-1") == []

    @pytest.mark.asyncio
    async def test_message_between_clients_is_free(self, messaging, repos):
        await messaging.send_message("user-client-1", "user-client-2", "hey")
        assert repos.usage.store == {}

    @pytest.mark.asyncio
    async def test_chat_quota(self, messaging, repos):
        await messaging.send_message("user-client-1", "user-provider-1", "one")
        await messaging.send_message("user-client-2", "user-provider-1", "two")
        with pytest.raises(QuotaExceeded):
            await messaging.send_message("user-client-1", "user-provider-1", "three")
        assert len(repos.messages.list_for_user("user-provider-1")) == 2

    @pytest.mark.asyncio
    async def test_rejects_empty(self, messaging):
        with pytest.raises(InvalidRequest):
            await messaging.send_message("user-client-1", "user-provider-1", "   ")

    @pytest.mark.asyncio
    async def test_rejects_self(self, messaging):
        with pytest.raises(InvalidRequest):
            await messaging.send_message("user-client-1", "user-client-1", "me")

    @pytest.mark.asyncio
    async def test_receiver_notified(self, messaging, inbox):
        received = await inbox("user-provider-1")
        await messaging.send_message("user-client-1", "user-provider-1", "ping")
        assert len(received) == 1
        assert received[0]["type"] == "notification"
        assert received[0]["payload"]["name"] == "message_received"
        assert received[0]["message"]["content"] == "ping"


class TestStartCall:
    """Tests for call invitations sent through chat."""

    @pytest.mark.asyncio
    async def test_invitation_carries_room(self, messaging, inbox):
        received = await inbox("user-client-1")
        message = await messaging.start_call("user-provider-1", "user-client-1")
        assert message.content == CALL_INVITATION_TEXT
        assert invitation_room(message) == "room_test_1"
        assert received[0]["payload"]["name"] == "call_invitation"
        assert "room_test_1" in received[0]["payload"]["detail"]

    @pytest.mark.asyncio
    async def test_room_failure(self, repos, meter, leads, hub):
        def broken():
            raise RuntimeError("no rooms")

        messaging = MessagingService(repos, meter, leads, channel=hub, room_factory=broken)
        with pytest.raises(CallProvisioningError):
            await messaging.start_call("user-provider-1", "user-client-1")
        assert repos.messages.list_for_user("user-client-1") == []

    def test_plain_message_has_no_room(self, repos):
        from expertmeet.schemas import Message

        assert invitation_room(Message(sender_id="a", receiver_id="b", content="hi")) is None


class TestConversations:
    @pytest.mark.asyncio
    async def test_reading_marks_incoming_read(self, messaging, repos):
        await messaging.send_message("user-client-1", "user-provider-1", "first")
        await messaging.send_message("user-provider-1", "user-client-1", "reply")

        thread = messaging.get_conversation("user-provider-1", "user-client-1")
        assert [m.content for m in thread] == ["first", "reply"]
        incoming = [m for m in repos.messages.list_between("user-client-1", "user-provider-1") if m.content == "first"]
        assert incoming[0].read is True
        outgoing = [m for m in thread if m.content == "reply"]
        assert outgoing[0].read is False

    @pytest.mark.asyncio
    async def test_conversation_summaries(self, messaging):
        await messaging.send_message("user-client-1", "user-provider-1", "first")
        await messaging.send_message("user-client-2", "user-provider-1", "other")
        summaries = {c.partner_id: c for c in messaging.list_conversations("user-provider-1")}
        assert set(summaries) == {"user-client-1", "user-client-2"}
        assert summaries["user-client-1"].unread == 1
        assert summaries["user-client-1"].last_message == "first"
