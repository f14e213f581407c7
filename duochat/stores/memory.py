from datetime import datetime, timezone
from typing import Dict, List, Optional

from duochat.core.errors import UsernameTaken
from duochat.models.models import Message, User
from duochat.stores.base import CredentialStore, MessageStore


class InMemoryCredentialStore(CredentialStore):
    def __init__(self):
        self.users: Dict[str, User] = {}

    async def get_user(self, username: str) -> Optional[User]:
        user = self.users.get(username)
        return user.model_copy() if user else None

    async def create_user(self, username: str, password_hash: Optional[str] = None) -> User:
        if username in self.users:
            raise UsernameTaken()
        user = User(username=username, password_hash=password_hash)
        self.users[username] = user
        return user.model_copy()

    async def set_password(self, username: str, password_hash: str) -> bool:
        user = self.users.get(username)
        if user is None or user.has_password:
            return False
        user.password_hash = password_hash
        return True

    async def set_online(self, username: str, online: bool) -> None:
        user = self.users.get(username)
        if user is not None:
            user.online = online

    async def list_users(self) -> List[User]:
        return [user.model_copy() for user in self.users.values()]

    async def reset_presence(self) -> None:
        for user in self.users.values():
            user.online = False


class InMemoryMessageStore(MessageStore):
    def __init__(self):
        self.messages: List[Message] = []
        self._last_timestamp: Optional[datetime] = None

    def _now(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    async def insert_message(self, sender: str, receiver: str, body: str) -> Message:
        message = Message(
            id=str(len(self.messages) + 1),
            sender=sender,
            receiver=receiver,
            body=body,
            timestamp=self._now(),
        )
        self.messages.append(message)
        return message

    async def conversation(self, first: str, second: str) -> List[Message]:
        pair = {first, second}
        # list order is insertion order, which already matches timestamp order
        return [m for m in self.messages if {m.sender, m.receiver} == pair]

    async def messages_for(self, username: str) -> List[Message]:
        return [m for m in self.messages if username in (m.sender, m.receiver)]
