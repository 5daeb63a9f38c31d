from __future__ import annotations

import re
from typing import Literal

from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def validate_identifier(value: str) -> str:
    if not _IDENTIFIER.match(value):
        raise ValueError(f"{value!r} is not a valid SQL identifier")
    return value


class Settings(BaseSettings):
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "postgres"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE: int = 300

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_STREAM_PREFIX: str = ""
    REDIS_STREAM_MAXLEN: int | None = None

    OUTBOX_TABLE: str = "pg_trx_outbox"
    OUTBOX_MODE: Literal["short-polling", "notify", "logical"] = "short-polling"
    OUTBOX_POLL_INTERVAL_MS: int = 5000
    OUTBOX_LIMIT: int = 50
    OUTBOX_PARTITION: int | None = None
    OUTBOX_TOPIC_FILTER: list[str] | None = None
    OUTBOX_CONCURRENCY: bool = False

    OUTBOX_RETRY_DELAY_SECONDS: float = 5
    OUTBOX_RETRY_MAX_ATTEMPTS: int = 5
    OUTBOX_CLEAR_ERROR_ON_SUCCESS: bool = False

    OUTBOX_RESPOND_INTERVAL_MS: int = 100
    OUTBOX_INIT_SYNC_BATCH_SIZE: int = 100
    OUTBOX_INITIAL_EVENT_ID: int = 0

    OUTBOX_NOTIFY_CHANNEL: str = "pg_trx_outbox"
    OUTBOX_LOGICAL_SLOT: str = "pg_trx_outbox"
    OUTBOX_LOGICAL_PUBLICATION: str = "pg_trx_outbox"
    OUTBOX_LOGICAL_INTERVAL_MS: int = 100

    @field_validator(
        "OUTBOX_TABLE",
        "OUTBOX_NOTIFY_CHANNEL",
        "OUTBOX_LOGICAL_SLOT",
        "OUTBOX_LOGICAL_PUBLICATION",
    )
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        return validate_identifier(value)

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
