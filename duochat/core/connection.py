import enum
from typing import Optional, Protocol

from duochat.models.events import OutboundEvent


class Connection(Protocol):
    """One live client link, as seen by the core."""

    id: str

    async def send(self, event: OutboundEvent) -> None:
        ...


class SessionState(enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class Session:
    """Authentication state of a single connection."""

    def __init__(self, connection: Connection):
        self.connection = connection
        self.state = SessionState.ANONYMOUS
        self.username: Optional[str] = None

    @property
    def id(self) -> str:
        return self.connection.id

    @property
    def authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def bind(self, username: str) -> None:
        self.username = username
        self.state = SessionState.AUTHENTICATED

    def __repr__(self):
        return f"<Session {self.id} {self.state.value} user={self.username!r}>"
