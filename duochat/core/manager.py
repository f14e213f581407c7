import logging
from typing import Dict, List, Optional, Union

from duochat.core.connection import Connection, Session
from duochat.core.errors import InvalidEvent, StoreFailure
from duochat.core.outbox import Outbox
from duochat.core.passwords import PasswordHasher
from duochat.core.presence import PresenceRegistry
from duochat.core.roster import RosterBroadcaster
from duochat.core.router import MessageRouter
from duochat.core.session import SessionManager
from duochat.models.events import (
    ChatHistory,
    Error,
    LoadMessages,
    LoadUsers,
    Login,
    LoginFailed,
    SendChatMessage,
    SetUsername,
    SetupFailed,
    SetupPassword,
    Signup,
    SignupFailed,
    parse_inbound,
)
from duochat.stores.base import CredentialStore, MessageStore

logger = logging.getLogger(__name__)

# failure event sent back when an authentication frame does not validate
_INVALID_AUTH_REPLIES = {
    "login": LoginFailed,
    "set-username": LoginFailed,
    "signup": SignupFailed,
    "setup-password": SetupFailed,
}


class ConnectionManager:
    """Owns the open connections and routes their events into the core."""

    def __init__(
        self,
        credentials: CredentialStore,
        messages: MessageStore,
        hasher: Optional[PasswordHasher] = None,
        single_session: bool = False,
    ):
        self.credentials = credentials
        self.messages = messages
        self.active_connections: Dict[str, Session] = {}

        self.outbox = Outbox()
        self.registry = PresenceRegistry()
        self.roster = RosterBroadcaster(credentials, self.registry, self.connections, self.outbox)
        self.router = MessageRouter(messages, self.registry, self.outbox)
        self.sessions = SessionManager(
            credentials,
            self.registry,
            self.roster,
            self.router,
            hasher or PasswordHasher(),
            single_session=single_session,
        )

    async def startup(self) -> None:
        await self.credentials.initialize()
        await self.messages.initialize()
        # nobody is connected to a freshly started process
        await self.credentials.reset_presence()

    def connections(self) -> List[Connection]:
        return [session.connection for session in self.active_connections.values()]

    def connect(self, connection: Connection) -> Session:
        session = Session(connection)
        self.active_connections[connection.id] = session
        logger.info("Connection %s opened (%d open)", connection.id, len(self.active_connections))
        return session

    async def disconnect(self, session: Session) -> None:
        self.active_connections.pop(session.id, None)
        self.outbox.discard(session.connection)
        await self.sessions.close(session)
        logger.info("Connection %s closed (%d open)", session.id, len(self.active_connections))

    async def dispatch(self, session: Session, raw: Union[str, bytes]) -> None:
        try:
            event = parse_inbound(raw)
        except InvalidEvent as exc:
            reply = _INVALID_AUTH_REPLIES.get(exc.event)
            if reply is not None:
                await session.connection.send(reply(reason=exc.reason))
            else:
                logger.debug("Dropping invalid frame on %r: %s", session, exc.detail)
            return

        if isinstance(event, Login):
            await self.sessions.login(session, event.username, event.password)
        elif isinstance(event, Signup):
            await self.sessions.signup(session, event.username, event.password)
        elif isinstance(event, SetupPassword):
            await self.sessions.setup_password(session, event.username, event.password)
        elif isinstance(event, SetUsername):
            await self.sessions.set_username(session, event.username)
        elif not session.authenticated:
            logger.debug("Dropping %s from unauthenticated %r", event.event, session)
        elif isinstance(event, SendChatMessage):
            await self._guard(session, "chat-message", self.router.send(session, event.to, event.msg))
        elif isinstance(event, LoadMessages):
            await self._guard(session, "load-messages", self._load_messages(session, event.user))
        elif isinstance(event, LoadUsers):
            await self._guard(session, "load-users", self.roster.send_to(session.connection))

    async def _load_messages(self, session: Session, with_user) -> None:
        messages = await self.router.load_history(session, with_user)
        if messages is not None:
            await session.connection.send(ChatHistory.from_messages(messages))

    @staticmethod
    async def _guard(session: Session, operation: str, call) -> None:
        try:
            await call
        except StoreFailure as exc:
            logger.error("Store failure during %s for '%s'", operation, session.username, exc_info=exc)
            await session.connection.send(Error(operation=operation, reason=exc.reason))
