"""
Wire events exchanged over the chat WebSocket.

Every frame is a flat JSON object tagged by its ``event`` field. Inbound frames
are validated against a closed union of models before they reach the core;
outbound frames are built from the models below and serialized with
``to_wire``.
"""

import json
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, ValidationError, field_validator

from duochat.core.errors import InvalidEvent
from duochat.models.models import Message, RosterEntry

MAX_USERNAME_LENGTH = 64
MAX_MESSAGE_LENGTH = 4096
# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72

Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_USERNAME_LENGTH)]


class _Credentials(BaseModel):
    username: Username
    password: Annotated[str, StringConstraints(min_length=1)]

    @field_validator("password")
    @classmethod
    def password_fits_hash(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class Login(_Credentials):
    event: Literal["login"]


class Signup(_Credentials):
    event: Literal["signup"]


class SetupPassword(_Credentials):
    event: Literal["setup-password"]


class SetUsername(BaseModel):
    event: Literal["set-username"]
    username: Username


class SendChatMessage(BaseModel):
    event: Literal["chat-message"]
    to: Username
    msg: Annotated[str, StringConstraints(min_length=1, max_length=MAX_MESSAGE_LENGTH)]


class LoadMessages(BaseModel):
    event: Literal["load-messages"]
    user: Optional[Username] = None


class LoadUsers(BaseModel):
    event: Literal["load-users"]


InboundEvent = Annotated[
    Union[Login, Signup, SetupPassword, SetUsername, SendChatMessage, LoadMessages, LoadUsers],
    Field(discriminator="event"),
]

_inbound_adapter = TypeAdapter(InboundEvent)


def parse_inbound(raw: Union[str, bytes]) -> BaseModel:
    """Validate one inbound frame, raising ``InvalidEvent`` when it is unusable."""
    try:
        payload = json.loads(raw)
    except (ValueError, TypeError):
        raise InvalidEvent(None, "bad_json") from None
    except RecursionError:
        raise InvalidEvent(None, "frame nested too deeply") from None

    if not isinstance(payload, dict):
        raise InvalidEvent(None, "frame must be an object")

    name = payload.get("event")
    try:
        return _inbound_adapter.validate_python(payload)
    except ValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"][1:]) or "event"
        raise InvalidEvent(name if isinstance(name, str) else None, f"{field}: {error['msg']}")


class OutboundEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class LoginSuccess(OutboundEvent):
    event: Literal["login-success"] = "login-success"
    username: str


class LoginFailed(OutboundEvent):
    event: Literal["login-failed"] = "login-failed"
    reason: str


class SignupSuccessful(OutboundEvent):
    event: Literal["signup-successful"] = "signup-successful"
    username: str


class SignupFailed(OutboundEvent):
    event: Literal["signup-failed"] = "signup-failed"
    reason: str


class PromptSignup(OutboundEvent):
    event: Literal["prompt-signup"] = "prompt-signup"
    reason: str


class RequirePasswordSetup(OutboundEvent):
    event: Literal["require-password-setup"] = "require-password-setup"
    username: str


class PasswordSetupSuccessful(OutboundEvent):
    event: Literal["password-setup-successful"] = "password-setup-successful"
    username: str


class SetupFailed(OutboundEvent):
    event: Literal["setup-failed"] = "setup-failed"
    reason: str


class MessageView(BaseModel):
    """A stored message as clients see it."""

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from")
    to: str
    msg: str
    timestamp: datetime

    @classmethod
    def from_message(cls, message: Message):
        return cls(sender=message.sender, to=message.receiver, msg=message.body, timestamp=message.timestamp)


class ChatMessage(OutboundEvent, MessageView):
    event: Literal["chat-message"] = "chat-message"


class ChatHistory(OutboundEvent):
    event: Literal["chat-history"] = "chat-history"
    messages: List[MessageView]

    @classmethod
    def from_messages(cls, messages: List[Message]) -> "ChatHistory":
        return cls(messages=[MessageView.from_message(m) for m in messages])


class Users(OutboundEvent):
    event: Literal["users"] = "users"
    users: List[RosterEntry]


class Notification(OutboundEvent):
    event: Literal["notification"] = "notification"
    text: str


class Error(OutboundEvent):
    event: Literal["error"] = "error"
    operation: str
    reason: str
