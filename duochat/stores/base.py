"""
Persistence interfaces used by the chat core.

Implementations raise ``StoreFailure`` for backend errors and ``UsernameTaken``
when a user is created twice. All operations are coroutines; callers must not
assume any ordering between two calls they did not await in sequence.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from duochat.models.models import Message, User


class CredentialStore(ABC):
    async def initialize(self) -> None:
        """Prepare the backend (indexes, tables)."""

    @abstractmethod
    async def get_user(self, username: str) -> Optional[User]:
        ...

    @abstractmethod
    async def create_user(self, username: str, password_hash: Optional[str] = None) -> User:
        """Create a user, raising ``UsernameTaken`` if the name is already claimed."""

    @abstractmethod
    async def set_password(self, username: str, password_hash: str) -> bool:
        """Store a hash for a passwordless user. Returns False if none was updated."""

    @abstractmethod
    async def set_online(self, username: str, online: bool) -> None:
        ...

    @abstractmethod
    async def list_users(self) -> List[User]:
        ...

    @abstractmethod
    async def reset_presence(self) -> None:
        """Mark every stored user offline."""


class MessageStore(ABC):
    async def initialize(self) -> None:
        """Prepare the backend (indexes, tables)."""

    @abstractmethod
    async def insert_message(self, sender: str, receiver: str, body: str) -> Message:
        """Persist a message; the store assigns its id and timestamp."""

    @abstractmethod
    async def conversation(self, first: str, second: str) -> List[Message]:
        """Messages exchanged between two users, oldest first."""

    @abstractmethod
    async def messages_for(self, username: str) -> List[Message]:
        """Messages sent or received by a user, oldest first."""
