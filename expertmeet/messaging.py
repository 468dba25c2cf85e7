from __future__ import annotations

import logging
from typing import Callable, Optional

from .booking.leads import LeadService
from .booking.usage import UsageMeter
from .calls.rooms import generate_room_id, user_channel
from .db.repository import Repositories
from .effects import Effect, run_effects
from .errors import CallProvisioningError, InvalidRequest
from .notifications import call_invitation, message_received
from .realtime.hub import MessageChannel
from .schemas import Conversation, Message, ProviderProfile, UsageDelta

logger = logging.getLogger(__name__)

CALL_INVITATION_TEXT = "Started a video call"


def invitation_room(message: Message) -> Optional[str]:
    return message.call_room_id or None


class MessagingService:
    def __init__(
        self,
        repos: Repositories,
        meter: UsageMeter,
        leads: LeadService,
        channel: Optional[MessageChannel] = None,
        room_factory: Callable[[], str] = generate_room_id,
    ) -> None:
        self.repos = repos
        self.meter = meter
        self.leads = leads
        self.channel = channel
        self.room_factory = room_factory

    def _charged_provider(self, sender_id: str, receiver_id: str) -> tuple[Optional[ProviderProfile], Optional[str]]:
        provider = self.repos.profiles.get_provider_by_user(sender_id)
        if provider:
            return provider, receiver_id
        provider = self.repos.profiles.get_provider_by_user(receiver_id)
        if provider:
            return provider, sender_id
        return None, None

    async def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        call_room_id: Optional[str] = None,
    ) -> Message:
        if not content.strip():
            raise InvalidRequest("Message cannot be empty.")
        if sender_id == receiver_id:
            raise InvalidRequest("Cannot send a message to yourself.")

        provider, partner_id = self._charged_provider(sender_id, receiver_id)
        delta = UsageDelta(partner_id=partner_id)
        if provider:
            self.meter.check_limit(provider.id, "chat", delta)

        message = Message(
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            call_room_id=call_room_id,
        )
        self.repos.messages.create(message)

        effects: list[Effect] = []
        if provider:
            effects.append(Effect("record_usage", lambda: self.meter.record_usage(provider.id, "chat", delta)))
        client = self.repos.profiles.get_client_by_user(sender_id)
        if client and provider and provider.user_id == receiver_id:
            effects.append(Effect("emit_lead", lambda: self.leads.emit_for_message(message, client, provider)))
        run_effects(effects, context=f"Message {message.id}")

        await self._notify_receiver(message)
        return message

    async def _notify_receiver(self, message: Message) -> None:
        if self.channel is None:
            return
        notification = call_invitation(message) if message.call_room_id else message_received(message)
        payload = {
            "type": "notification",
            "payload": notification.model_dump(mode="json"),
            "message": message.model_dump(mode="json"),
        }
        try:
            await self.channel.publish(user_channel(message.receiver_id), payload)
        except Exception:
            logger.exception("Could not deliver realtime notification for message %s", message.id)

    async def start_call(self, sender_id: str, receiver_id: str) -> Message:
        try:
            room_id = self.room_factory()
        except Exception as exc:
            raise CallProvisioningError("Could not start a video call.") from exc
        if not room_id:
            raise CallProvisioningError("Could not start a video call.")
        logger.info("User %s invited %s to call room %s", sender_id, receiver_id, room_id)
        return await self.send_message(sender_id, receiver_id, CALL_INVITATION_TEXT, call_room_id=room_id)

    def get_conversation(self, user_id: str, partner_id: str) -> list[Message]:
        thread = self.repos.messages.list_between(user_id, partner_id)
        unread = [message for message in thread if message.receiver_id == user_id and not message.read]
        if unread:
            self.repos.messages.mark_read([message.id for message in unread])
            for message in unread:
                message.read = True
        return thread

    def list_conversations(self, user_id: str) -> list[Conversation]:
        conversations: dict[str, Conversation] = {}
        for message in self.repos.messages.list_for_user(user_id):
            partner_id = message.receiver_id if message.sender_id == user_id else message.sender_id
            unread = 1 if message.sender_id != user_id and not message.read else 0
            if partner_id not in conversations:
                conversations[partner_id] = Conversation(
                    partner_id=partner_id,
                    last_message=message.content,
                    last_message_time=message.created_at,
                    unread=unread,
                )
            else:
                conversations[partner_id].unread += unread
        return list(conversations.values())
