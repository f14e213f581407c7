from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class User(BaseModel):
    username: str
    password_hash: Optional[str] = None
    online: bool = False

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None


class Message(BaseModel):
    id: str
    sender: str
    receiver: str
    body: str
    timestamp: datetime


class RosterEntry(BaseModel):
    username: str
    online: bool
