"""Per-connection authentication: login, signup, username claims and password setup."""

import logging

from duochat.core.connection import Session, SessionState
from duochat.core.errors import (
    AuthenticationFailure,
    ChatError,
    PasswordAlreadySet,
    PasswordSetupRequired,
    SignupRequired,
    StoreFailure,
    UsernameTaken,
)
from duochat.core.passwords import PasswordHasher
from duochat.core.presence import PresenceRegistry
from duochat.core.roster import RosterBroadcaster
from duochat.core.router import MessageRouter
from duochat.models.events import (
    ChatHistory,
    Error,
    LoginFailed,
    LoginSuccess,
    OutboundEvent,
    PasswordSetupSuccessful,
    PromptSignup,
    RequirePasswordSetup,
    SetupFailed,
    SignupFailed,
    SignupSuccessful,
)
from duochat.stores.base import CredentialStore

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(
        self,
        credentials: CredentialStore,
        registry: PresenceRegistry,
        roster: RosterBroadcaster,
        router: MessageRouter,
        hasher: PasswordHasher,
        single_session: bool = False,
    ):
        self.credentials = credentials
        self.registry = registry
        self.roster = roster
        self.router = router
        self.hasher = hasher
        self.single_session = single_session

    def _begin(self, session: Session) -> bool:
        if session.state is not SessionState.ANONYMOUS:
            logger.debug("Ignoring authentication event on %r", session)
            return False
        session.state = SessionState.AUTHENTICATING
        return True

    @staticmethod
    def _settle(session: Session) -> None:
        if session.state is SessionState.AUTHENTICATING:
            session.state = SessionState.ANONYMOUS

    async def login(self, session: Session, username: str, password: str) -> None:
        if not self._begin(session):
            return
        try:
            user = await self.credentials.get_user(username)
            if user is None:
                raise SignupRequired()
            if not user.has_password:
                raise PasswordSetupRequired()
            if not await self.hasher.verify(password, user.password_hash):
                raise AuthenticationFailure("Invalid password")
            await self._complete(session, username, LoginSuccess(username=username))
        except SignupRequired as exc:
            await session.connection.send(PromptSignup(reason=exc.reason))
        except PasswordSetupRequired:
            await session.connection.send(RequirePasswordSetup(username=username))
        except ChatError as exc:
            self._log_failure("login", username, exc)
            await session.connection.send(LoginFailed(reason=exc.reason))
        finally:
            self._settle(session)

    async def signup(self, session: Session, username: str, password: str) -> None:
        if not self._begin(session):
            return
        try:
            if await self.credentials.get_user(username) is not None:
                raise UsernameTaken()
            password_hash = await self.hasher.hash(password)
            await self.credentials.create_user(username, password_hash)
            logger.info("User '%s' signed up", username)
            await self._complete(session, username, SignupSuccessful(username=username))
        except ChatError as exc:
            self._log_failure("signup", username, exc)
            await session.connection.send(SignupFailed(reason=exc.reason))
        finally:
            self._settle(session)

    async def setup_password(self, session: Session, username: str, password: str) -> None:
        if not self._begin(session):
            return
        try:
            user = await self.credentials.get_user(username)
            if user is None:
                raise SignupRequired("User not found")
            if user.has_password:
                raise PasswordAlreadySet()
            password_hash = await self.hasher.hash(password)
            if not await self.credentials.set_password(username, password_hash):
                raise PasswordAlreadySet()
            logger.info("User '%s' set up a password", username)
            await self._complete(session, username, PasswordSetupSuccessful(username=username))
        except ChatError as exc:
            self._log_failure("password setup", username, exc)
            await session.connection.send(SetupFailed(reason=exc.reason))
        finally:
            self._settle(session)

    async def set_username(self, session: Session, username: str) -> None:
        """Claim a username that still needs a password."""
        if not self._begin(session):
            return
        try:
            user = await self.credentials.get_user(username)
            if user is None:
                try:
                    await self.credentials.create_user(username)
                    logger.info("Username '%s' claimed", username)
                except UsernameTaken:
                    # claimed by another connection in the meantime
                    user = await self.credentials.get_user(username)
            if user is not None and user.has_password:
                raise AuthenticationFailure("Username is registered, log in with your password")
            await session.connection.send(RequirePasswordSetup(username=username))
        except ChatError as exc:
            self._log_failure("set-username", username, exc)
            await session.connection.send(LoginFailed(reason=exc.reason))
        finally:
            self._settle(session)

    async def _complete(self, session: Session, username: str, success: OutboundEvent) -> None:
        if self.single_session:
            current = self.registry.handle_of(username)
            if current is not None and current is not session.connection:
                raise AuthenticationFailure("User is already logged in elsewhere")

        await self.credentials.set_online(username, True)
        session.bind(username)
        logger.info("User '%s' authenticated on connection %s", username, session.id)

        await session.connection.send(success)
        self.registry.register(username, session.connection)
        await self.roster.flush(session.connection)
        await self._send_initial_history(session)

    async def _send_initial_history(self, session: Session) -> None:
        try:
            messages = await self.router.load_history(session)
        except StoreFailure as exc:
            logger.error("Could not load history for '%s'", session.username, exc_info=exc)
            await session.connection.send(Error(operation="chat-history", reason=exc.reason))
            return
        await session.connection.send(ChatHistory.from_messages(messages))

    async def close(self, session: Session) -> None:
        """Tear down a connection's session; safe to call more than once."""
        if session.state is SessionState.CLOSED:
            return
        username = session.username if session.authenticated else None
        session.state = SessionState.CLOSED
        if username is None:
            return

        released = self.registry.unregister(username, session.connection)
        if released or not self.registry.is_online(username):
            try:
                await self.credentials.set_online(username, False)
            except StoreFailure as exc:
                logger.error("Could not persist offline flag for '%s'", username, exc_info=exc)
        logger.info("User '%s' disconnected from connection %s", username, session.id)
        await self.roster.flush()

    @staticmethod
    def _log_failure(operation: str, username: str, exc: ChatError) -> None:
        if isinstance(exc, StoreFailure):
            logger.error("Store failure during %s for '%s'", operation, username, exc_info=exc)
        else:
            logger.info("%s failed for '%s': %s", operation.capitalize(), username, exc.reason)
