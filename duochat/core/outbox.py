import asyncio
import logging
from collections import deque
from typing import Deque, Dict

from duochat.core.connection import Connection
from duochat.models.events import OutboundEvent

logger = logging.getLogger(__name__)


class Outbox:
    """Per-connection write queues.

    Every connection gets its own writer task, so a client that stops reading
    only holds up frames addressed to itself.
    """

    def __init__(self):
        self._queues: Dict[str, Deque[OutboundEvent]] = {}
        self._writers: Dict[str, asyncio.Task] = {}

    def post(self, connection: Connection, event: OutboundEvent, coalesce: bool = False) -> None:
        queue = self._queues.setdefault(connection.id, deque())
        if coalesce:
            # only the newest frame of this kind is worth sending
            for queued in [e for e in queue if e.event == event.event]:
                queue.remove(queued)
        queue.append(event)

        writer = self._writers.get(connection.id)
        if writer is None or writer.done():
            writer = asyncio.get_running_loop().create_task(self._write(connection, queue))
            self._writers[connection.id] = writer

    async def _write(self, connection: Connection, queue: Deque[OutboundEvent]) -> None:
        while queue:
            event = queue.popleft()
            try:
                await connection.send(event)
            except Exception as e:
                logger.warning("Failed to write %s to connection %s: %s", event.event, connection.id, e)
        if self._queues.get(connection.id) is queue:
            del self._queues[connection.id]
        if self._writers.get(connection.id) is asyncio.current_task():
            del self._writers[connection.id]

    async def wait(self, connection: Connection) -> None:
        """Wait until everything queued for ``connection`` has been written."""
        writer = self._writers.get(connection.id)
        if writer is not None:
            await asyncio.wait({writer})

    async def drain(self) -> None:
        """Wait until every queue is empty."""
        while self._writers:
            await asyncio.wait(set(self._writers.values()))

    def discard(self, connection: Connection) -> None:
        self._queues.pop(connection.id, None)
        writer = self._writers.pop(connection.id, None)
        if writer is not None and not writer.done():
            writer.cancel()
