from typing import Tuple

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from duochat.config.settings import Settings
from duochat.stores.base import CredentialStore, MessageStore
from duochat.stores.memory import InMemoryCredentialStore, InMemoryMessageStore
from duochat.stores.mongo import MongoCredentialStore, MongoMessageStore


def create_database(settings: Settings) -> AsyncIOMotorDatabase:
    client = AsyncIOMotorClient(settings.mongodb_connection_url, tz_aware=True)
    return client[settings.mongodb_database]


def create_stores(settings: Settings) -> Tuple[CredentialStore, MessageStore]:
    if settings.store == "memory":
        return InMemoryCredentialStore(), InMemoryMessageStore()
    if settings.store != "mongo":
        raise ValueError(f"Unknown CHAT_STORE backend: {settings.store!r}")
    db = create_database(settings)
    return MongoCredentialStore(db), MongoMessageStore(db)
