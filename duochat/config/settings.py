import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    store: str = "mongo"
    mongodb_connection_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "chat_db"
    bcrypt_rounds: int = 12
    single_session: bool = False
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            store=os.getenv("CHAT_STORE", "mongo").lower(),
            mongodb_connection_url=os.getenv("MONGODB_CONNECTION_URL", "mongodb://localhost:27017"),
            mongodb_database=os.getenv("MONGODB_DATABASE", "chat_db"),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
            single_session=_env_bool("SINGLE_SESSION", False),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            host=os.getenv("CHAT_HOST", "127.0.0.1"),
            port=int(os.getenv("CHAT_PORT", "8000")),
        )
