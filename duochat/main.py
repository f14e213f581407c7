from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from duochat.config.database import create_stores
from duochat.config.logging import configure_logging
from duochat.config.settings import Settings
from duochat.core.manager import ConnectionManager
from duochat.core.passwords import PasswordHasher
from duochat.routes.routes import router
from duochat.stores.base import CredentialStore, MessageStore


def create_app(
    settings: Optional[Settings] = None,
    credentials: Optional[CredentialStore] = None,
    messages: Optional[MessageStore] = None,
) -> FastAPI:
    """Build the chat app. Stores default to the backend named in ``settings``."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if credentials is None or messages is None:
            app_credentials, app_messages = create_stores(settings)
        else:
            app_credentials, app_messages = credentials, messages
        manager = ConnectionManager(
            app_credentials,
            app_messages,
            hasher=PasswordHasher(settings.bcrypt_rounds),
            single_session=settings.single_session,
        )
        await manager.startup()
        app.state.manager = manager
        yield

    app = FastAPI(title="duochat", lifespan=lifespan)
    app.include_router(router)
    return app


def run() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
