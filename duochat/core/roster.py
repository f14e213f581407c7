import asyncio
import logging
from typing import Callable, Iterable, List, Optional, Set

from duochat.core.connection import Connection
from duochat.core.errors import StoreFailure
from duochat.core.outbox import Outbox
from duochat.core.presence import PresenceChange, PresenceRegistry
from duochat.models.events import Users
from duochat.models.models import RosterEntry
from duochat.stores.base import CredentialStore

logger = logging.getLogger(__name__)


class RosterBroadcaster:
    """Pushes the full user list to every open connection on presence changes."""

    def __init__(
        self,
        credentials: CredentialStore,
        registry: PresenceRegistry,
        connections: Callable[[], Iterable[Connection]],
        outbox: Outbox,
    ):
        self.credentials = credentials
        self.registry = registry
        self.connections = connections
        self.outbox = outbox
        self._pending: Set[asyncio.Task] = set()
        registry.subscribe(self._on_presence_change)

    def _on_presence_change(self, change: PresenceChange) -> None:
        logger.debug("Presence change %s online=%s, scheduling roster broadcast", change.username, change.online)
        task = asyncio.get_running_loop().create_task(self.broadcast())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self, connection: Optional[Connection] = None) -> None:
        """Wait until scheduled broadcasts are queued, and written to ``connection`` if given.

        Writes to other connections are never waited on.
        """
        while self._pending:
            await asyncio.wait(set(self._pending))
        if connection is not None:
            await self.outbox.wait(connection)

    async def compute(self) -> List[RosterEntry]:
        users = await self.credentials.list_users()
        presence = self.registry.snapshot()
        roster = [
            RosterEntry(username=user.username, online=presence.get(user.username, user.online))
            for user in users
        ]
        roster.sort(key=lambda entry: entry.username)
        return roster

    async def broadcast(self) -> None:
        try:
            roster = await self.compute()
        except StoreFailure:
            logger.exception("Could not load users for roster broadcast")
            return

        event = Users(users=roster)
        for connection in list(self.connections()):
            self.outbox.post(connection, event, coalesce=True)

    async def send_to(self, connection: Connection) -> None:
        roster = await self.compute()
        await connection.send(Users(users=roster))
