import asyncio
import itertools
from typing import List

import pytest

from duochat.core.manager import ConnectionManager
from duochat.core.passwords import PasswordHasher
from duochat.models.events import OutboundEvent
from duochat.stores.memory import InMemoryCredentialStore, InMemoryMessageStore

_ids = itertools.count(1)


class FakeConnection:
    """Collects outbound events instead of writing them to a socket."""

    def __init__(self, name: str = None):
        self.id = name or f"conn-{next(_ids)}"
        self.sent: List[OutboundEvent] = []
        self.broken = False

    async def send(self, event: OutboundEvent) -> None:
        if self.broken:
            raise ConnectionResetError("socket closed")
        self.sent.append(event)

    def events(self, name: str) -> List[OutboundEvent]:
        return [e for e in self.sent if e.event == name]

    def names(self) -> List[str]:
        return [e.event for e in self.sent]

    def last(self, name: str) -> OutboundEvent:
        matching = self.events(name)
        assert matching, f"no {name!r} event in {self.names()}"
        return matching[-1]

    def clear(self) -> None:
        self.sent.clear()


class StuckConnection(FakeConnection):
    """A client that has stopped reading: writes never complete."""

    async def send(self, event: OutboundEvent) -> None:
        await asyncio.Event().wait()


@pytest.fixture
def credentials():
    return InMemoryCredentialStore()


@pytest.fixture
def messages():
    return InMemoryMessageStore()


@pytest.fixture
def manager(credentials, messages):
    # lowest bcrypt cost keeps the suite fast
    return ConnectionManager(credentials, messages, hasher=PasswordHasher(rounds=4))


@pytest.fixture
def connect(manager):
    def _connect(name: str = None):
        connection = FakeConnection(name)
        return manager.connect(connection), connection

    return _connect


@pytest.fixture
def signed_up(manager, connect):
    """Sign a user up on a fresh connection and return (session, connection)."""

    async def _signed_up(username: str, password: str = "secret"):
        session, connection = connect(username)
        await manager.sessions.signup(session, username, password)
        assert session.authenticated
        await manager.outbox.drain()
        return session, connection

    return _signed_up
