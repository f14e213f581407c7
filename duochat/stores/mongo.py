from datetime import datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from duochat.core.errors import StoreFailure, UsernameTaken
from duochat.models.models import Message, User
from duochat.stores.base import CredentialStore, MessageStore

MESSAGE_ORDER = [("timestamp", ASCENDING), ("_id", ASCENDING)]


def _user_from_doc(doc: dict) -> User:
    return User(
        username=doc["username"],
        password_hash=doc.get("password_hash"),
        online=bool(doc.get("online", False)),
    )


def _message_from_doc(doc: dict) -> Message:
    timestamp = doc["timestamp"]
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return Message(
        id=str(doc["_id"]),
        sender=doc["sender"],
        receiver=doc["receiver"],
        body=doc["body"],
        timestamp=timestamp,
    )


class MongoCredentialStore(CredentialStore):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.users = db["users"]

    async def initialize(self) -> None:
        try:
            await self.users.create_index([("username", ASCENDING)], unique=True)
        except PyMongoError as exc:
            raise StoreFailure() from exc

    async def get_user(self, username: str) -> Optional[User]:
        try:
            doc = await self.users.find_one({"username": username})
        except PyMongoError as exc:
            raise StoreFailure() from exc
        return _user_from_doc(doc) if doc else None

    async def create_user(self, username: str, password_hash: Optional[str] = None) -> User:
        doc = {"username": username, "password_hash": password_hash, "online": False}
        try:
            await self.users.insert_one(doc)
        except DuplicateKeyError as exc:
            raise UsernameTaken() from exc
        except PyMongoError as exc:
            raise StoreFailure() from exc
        return _user_from_doc(doc)

    async def set_password(self, username: str, password_hash: str) -> bool:
        try:
            result = await self.users.update_one(
                {"username": username, "password_hash": None},
                {"$set": {"password_hash": password_hash}},
            )
        except PyMongoError as exc:
            raise StoreFailure() from exc
        return result.modified_count == 1

    async def set_online(self, username: str, online: bool) -> None:
        try:
            await self.users.update_one({"username": username}, {"$set": {"online": online}})
        except PyMongoError as exc:
            raise StoreFailure() from exc

    async def list_users(self) -> List[User]:
        users = []
        try:
            async for doc in self.users.find().sort("username", ASCENDING):
                users.append(_user_from_doc(doc))
        except PyMongoError as exc:
            raise StoreFailure() from exc
        return users

    async def reset_presence(self) -> None:
        try:
            await self.users.update_many({"online": True}, {"$set": {"online": False}})
        except PyMongoError as exc:
            raise StoreFailure() from exc


class MongoMessageStore(MessageStore):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.messages = db["messages"]
        self._last_timestamp: Optional[datetime] = None

    async def initialize(self) -> None:
        try:
            await self.messages.create_index([("sender", ASCENDING), ("receiver", ASCENDING), ("timestamp", ASCENDING)])
            await self.messages.create_index([("receiver", ASCENDING), ("timestamp", ASCENDING)])
        except PyMongoError as exc:
            raise StoreFailure() from exc

    def _now(self) -> datetime:
        # Mongo keeps millisecond precision
        now = datetime.now(timezone.utc)
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    async def insert_message(self, sender: str, receiver: str, body: str) -> Message:
        doc = {"sender": sender, "receiver": receiver, "body": body, "timestamp": self._now()}
        try:
            result = await self.messages.insert_one(doc)
        except PyMongoError as exc:
            raise StoreFailure() from exc
        doc["_id"] = result.inserted_id
        return _message_from_doc(doc)

    async def _find(self, query: dict) -> List[Message]:
        messages = []
        try:
            async for doc in self.messages.find(query).sort(MESSAGE_ORDER):
                messages.append(_message_from_doc(doc))
        except PyMongoError as exc:
            raise StoreFailure() from exc
        return messages

    async def conversation(self, first: str, second: str) -> List[Message]:
        return await self._find({
            "$or": [
                {"sender": first, "receiver": second},
                {"sender": second, "receiver": first},
            ]
        })

    async def messages_for(self, username: str) -> List[Message]:
        return await self._find({"$or": [{"sender": username}, {"receiver": username}]})
