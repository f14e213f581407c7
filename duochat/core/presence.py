"""
Presence registry.

Maps usernames to the connection currently serving them. It is the only place
the core looks when deciding whether a message can be delivered live. Every
mutation happens on the event loop thread, so the table needs no locking; each
effective change is announced to subscribers so the roster can be pushed.

When the same username logs in from two connections the later ``register``
wins. The older connection keeps running but no longer receives live
deliveries, and its eventual ``unregister`` is ignored because it no longer
owns the entry.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from duochat.core.connection import Connection

logger = logging.getLogger(__name__)


@dataclass
class PresenceEntry:
    username: str
    connection: Optional[Connection]
    online: bool


@dataclass(frozen=True)
class PresenceChange:
    username: str
    online: bool


PresenceListener = Callable[[PresenceChange], None]


class PresenceRegistry:
    def __init__(self):
        self._entries: Dict[str, PresenceEntry] = {}
        self._listeners: List[PresenceListener] = []

    def subscribe(self, listener: PresenceListener) -> None:
        self._listeners.append(listener)

    def register(self, username: str, connection: Connection) -> Optional[Connection]:
        """Bind ``username`` to ``connection`` and mark it online.

        Returns the connection previously bound to the username, if any.
        """
        entry = self._entries.get(username)
        previous = entry.connection if entry else None
        self._entries[username] = PresenceEntry(username=username, connection=connection, online=True)
        if previous is not None and previous is not connection:
            logger.info("User '%s' rebound from connection %s to %s", username, previous.id, connection.id)
        self._emit(PresenceChange(username, True))
        return previous

    def unregister(self, username: str, connection: Optional[Connection] = None) -> bool:
        """Mark ``username`` offline and drop its connection.

        With ``connection`` given, nothing happens unless that connection is the
        one currently bound. Returns True when the entry was cleared.
        """
        entry = self._entries.get(username)
        if entry is None:
            return False
        if connection is not None and entry.connection is not None and entry.connection is not connection:
            return False
        entry.connection = None
        entry.online = False
        self._emit(PresenceChange(username, False))
        return True

    def is_online(self, username: str) -> bool:
        entry = self._entries.get(username)
        return entry is not None and entry.online

    def handle_of(self, username: str) -> Optional[Connection]:
        entry = self._entries.get(username)
        return entry.connection if entry else None

    def knows(self, username: str) -> bool:
        return username in self._entries

    def snapshot(self) -> Dict[str, bool]:
        return {username: entry.online for username, entry in self._entries.items()}

    def _emit(self, change: PresenceChange) -> None:
        for listener in self._listeners:
            listener(change)
