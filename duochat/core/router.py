import logging
from typing import List, Optional

from duochat.core.connection import Session
from duochat.core.outbox import Outbox
from duochat.core.presence import PresenceRegistry
from duochat.models.events import ChatMessage, Notification
from duochat.models.models import Message
from duochat.stores.base import MessageStore

logger = logging.getLogger(__name__)


class MessageRouter:
    """Persists direct messages and pushes them to whoever is online.

    A message is always stored before anyone is told about it, so a failed or
    skipped live delivery only costs the receiver the push; the message shows
    up on their next history load. The echo goes through the sender's own
    queue so frames on one connection keep their order.
    """

    def __init__(self, messages: MessageStore, registry: PresenceRegistry, outbox: Outbox):
        self.messages = messages
        self.registry = registry
        self.outbox = outbox

    async def send(self, session: Session, to: str, body: str) -> Optional[Message]:
        if not session.authenticated:
            logger.debug("Dropping chat-message from unauthenticated connection %s", session.id)
            return None

        message = await self.messages.insert_message(session.username, to, body)
        event = ChatMessage.from_message(message)

        receiver = self.registry.handle_of(to) if self.registry.is_online(to) else None
        if receiver is not None and receiver is not session.connection:
            self.outbox.post(receiver, event)
            self.outbox.post(receiver, Notification(text=f"New message from {message.sender}"))
            logger.debug("Queued message %s from %s for live delivery to %s", message.id, message.sender, to)

        self.outbox.post(session.connection, event)
        await self.outbox.wait(session.connection)
        return message

    async def load_history(self, session: Session, with_user: Optional[str] = None) -> Optional[List[Message]]:
        if not session.authenticated:
            logger.debug("Dropping load-messages from unauthenticated connection %s", session.id)
            return None
        if with_user is None:
            return await self.messages.messages_for(session.username)
        return await self.messages.conversation(session.username, with_user)
