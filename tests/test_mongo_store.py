import uuid
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import ServerSelectionTimeoutError

from duochat.core.errors import StoreFailure, UsernameTaken
from duochat.core.manager import ConnectionManager
from duochat.core.passwords import PasswordHasher
from duochat.stores.mongo import MongoCredentialStore, MongoMessageStore

from conftest import FakeConnection


@pytest.fixture
def db():
    return AsyncMongoMockClient()[f"duochat-{uuid.uuid4().hex}"]


@pytest.fixture
async def mongo_credentials(db):
    store = MongoCredentialStore(db)
    await store.initialize()
    return store


@pytest.fixture
async def mongo_messages(db):
    store = MongoMessageStore(db)
    await store.initialize()
    return store


class Unreachable:
    """Collection stand-in for a server that cannot be reached."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise ServerSelectionTimeoutError("No servers found yet")

        if name == "find":
            return fail

        async def fail_async(*args, **kwargs):
            fail()

        return fail_async


def is_utc(stamp: datetime) -> bool:
    return stamp.tzinfo is not None and stamp.utcoffset() == timedelta(0)


async def test_create_user_twice_raises(mongo_credentials):
    await mongo_credentials.create_user("alice", "hash")
    with pytest.raises(UsernameTaken):
        await mongo_credentials.create_user("alice")


async def test_set_password_only_applies_to_passwordless_users(mongo_credentials):
    await mongo_credentials.create_user("carol")
    await mongo_credentials.create_user("alice", "hash")

    assert await mongo_credentials.set_password("carol", "first")
    assert not await mongo_credentials.set_password("carol", "second")
    assert not await mongo_credentials.set_password("alice", "other")
    assert not await mongo_credentials.set_password("ghost", "hash")
    assert (await mongo_credentials.get_user("carol")).password_hash == "first"
    assert (await mongo_credentials.get_user("alice")).password_hash == "hash"


async def test_get_user(mongo_credentials):
    await mongo_credentials.create_user("alice", "hash")

    user = await mongo_credentials.get_user("alice")
    assert (user.username, user.password_hash, user.online) == ("alice", "hash", False)
    assert user.has_password
    assert await mongo_credentials.get_user("ghost") is None


async def test_online_flags_and_reset(mongo_credentials):
    await mongo_credentials.create_user("bob", "hash")
    await mongo_credentials.create_user("alice", "hash")
    await mongo_credentials.set_online("alice", True)

    users = await mongo_credentials.list_users()
    assert [(u.username, u.online) for u in users] == [("alice", True), ("bob", False)]

    await mongo_credentials.reset_presence()

    assert [u.online for u in await mongo_credentials.list_users()] == [False, False]


async def test_timestamps_never_go_backwards(mongo_messages):
    stored = [await mongo_messages.insert_message("alice", "bob", str(i)) for i in range(50)]

    timestamps = [m.timestamp for m in stored]
    assert timestamps == sorted(timestamps)
    assert all(stamp.microsecond % 1000 == 0 for stamp in timestamps)
    assert len({m.id for m in stored}) == 50

    loaded = await mongo_messages.conversation("alice", "bob")
    assert [m.body for m in loaded] == [str(i) for i in range(50)]
    assert [m.timestamp for m in loaded] == timestamps
    assert all(is_utc(m.timestamp) for m in loaded)


async def test_equal_timestamps_fall_back_to_insertion_order(mongo_messages):
    mongo_messages._last_timestamp = datetime(2100, 1, 1, tzinfo=timezone.utc)

    for body in ("a", "b", "c"):
        await mongo_messages.insert_message("alice", "bob", body)

    loaded = await mongo_messages.conversation("bob", "alice")
    assert [m.body for m in loaded] == ["a", "b", "c"]
    assert len({m.timestamp for m in loaded}) == 1


async def test_ties_are_ordered_by_id(mongo_messages):
    stamp = datetime(2024, 5, 1, 12, 0)
    first, second = ObjectId(), ObjectId()
    for _id, body in ((second, "second"), (first, "first")):
        await mongo_messages.messages.insert_one(
            {"_id": _id, "sender": "alice", "receiver": "bob", "body": body, "timestamp": stamp}
        )

    loaded = await mongo_messages.messages_for("alice")
    assert [m.body for m in loaded] == ["first", "second"]


async def test_naive_timestamps_are_read_as_utc(mongo_messages):
    await mongo_messages.messages.insert_one(
        {"sender": "alice", "receiver": "bob", "body": "old", "timestamp": datetime(2020, 1, 1, 8, 30)}
    )

    (message,) = await mongo_messages.conversation("alice", "bob")
    assert message.timestamp == datetime(2020, 1, 1, 8, 30, tzinfo=timezone.utc)
    assert is_utc(message.timestamp)


async def test_messages_for_includes_sent_and_received(mongo_messages):
    await mongo_messages.insert_message("alice", "bob", "1")
    await mongo_messages.insert_message("carol", "alice", "2")
    await mongo_messages.insert_message("bob", "carol", "3")

    assert [m.body for m in await mongo_messages.messages_for("alice")] == ["1", "2"]
    assert [m.body for m in await mongo_messages.conversation("alice", "carol")] == ["2"]
    assert await mongo_messages.messages_for("dave") == []


@pytest.mark.parametrize(
    "call",
    [
        lambda store: store.initialize(),
        lambda store: store.get_user("alice"),
        lambda store: store.create_user("alice", "hash"),
        lambda store: store.set_password("alice", "hash"),
        lambda store: store.set_online("alice", True),
        lambda store: store.list_users(),
        lambda store: store.reset_presence(),
    ],
)
async def test_credential_store_wraps_driver_errors(mongo_credentials, call):
    mongo_credentials.users = Unreachable()
    with pytest.raises(StoreFailure):
        await call(mongo_credentials)


@pytest.mark.parametrize(
    "call",
    [
        lambda store: store.initialize(),
        lambda store: store.insert_message("alice", "bob", "hi"),
        lambda store: store.conversation("alice", "bob"),
        lambda store: store.messages_for("alice"),
    ],
)
async def test_message_store_wraps_driver_errors(mongo_messages, call):
    mongo_messages.messages = Unreachable()
    with pytest.raises(StoreFailure):
        await call(mongo_messages)


@pytest.fixture
async def mongo_manager(mongo_credentials, mongo_messages):
    manager = ConnectionManager(mongo_credentials, mongo_messages, hasher=PasswordHasher(rounds=4))
    await manager.startup()
    return manager


async def test_conversation_over_mongo_stores(mongo_manager):
    alice_conn, bob_conn = FakeConnection("alice"), FakeConnection("bob")
    alice, bob = mongo_manager.connect(alice_conn), mongo_manager.connect(bob_conn)
    await mongo_manager.sessions.signup(alice, "alice", "p1")
    await mongo_manager.sessions.signup(bob, "bob", "p2")

    await mongo_manager.router.send(alice, "bob", "one")
    await mongo_manager.router.send(bob, "alice", "two")
    await mongo_manager.router.send(alice, "bob", "three")

    from_alice = await mongo_manager.router.load_history(alice, "bob")
    from_bob = await mongo_manager.router.load_history(bob, "alice")
    assert [m.body for m in from_alice] == ["one", "two", "three"]
    assert from_alice == from_bob

    await mongo_manager.outbox.drain()
    assert [e.msg for e in bob_conn.events("chat-message")] == ["one", "two", "three"]


async def test_duplicate_signup_race_is_reported(mongo_manager, mongo_credentials, monkeypatch):
    first = mongo_manager.connect(FakeConnection())
    await mongo_manager.sessions.signup(first, "alice", "p1")

    async def not_there_yet(username):
        return None

    # the second signup checked before the first one was written
    monkeypatch.setattr(mongo_credentials, "get_user", not_there_yet)
    conn = FakeConnection()
    second = mongo_manager.connect(conn)
    await mongo_manager.sessions.signup(second, "alice", "p2")

    assert conn.names() == ["signup-failed"]
    assert conn.last("signup-failed").reason == "Username already taken"
    assert not second.authenticated
