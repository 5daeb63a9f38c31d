from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from trx_outbox.config import Settings, validate_identifier
from trx_outbox.domain.value_objects.enums import OutboxMode

logger = logging.getLogger(__name__)

RetryPredicate = Callable[[Any], bool]
ErrorCallback = Callable[[BaseException], Any]


def never_retry(_reason: Any) -> bool:
    return False


def log_error(exc: BaseException) -> None:
    logger.error("Error happened in trx-outbox: %s", exc, exc_info=exc)


@dataclass(frozen=True, slots=True)
class OutboxOptions:
    """Runtime knobs of one outbox instance."""

    table: str = "pg_trx_outbox"
    mode: OutboxMode = OutboxMode.SHORT_POLLING
    poll_interval_ms: int = 5000
    limit: int = 50
    partition: int | None = None
    topic_filter: Sequence[str] | None = None
    concurrency: bool = False

    retry_predicate: RetryPredicate = never_retry
    retry_delay_seconds: float = 5
    retry_max_attempts: int = 5
    clear_error_on_success: bool = False

    on_error: ErrorCallback = log_error

    respond_interval_ms: int = 100
    init_sync_batch_size: int = 100
    initial_event_id: int = 0

    notify_channel: str = "pg_trx_outbox"
    logical_slot: str = "pg_trx_outbox"
    logical_publication: str = "pg_trx_outbox"
    logical_interval_ms: int = 100

    def __post_init__(self) -> None:
        validate_identifier(self.table)
        validate_identifier(self.notify_channel)
        validate_identifier(self.logical_slot)
        validate_identifier(self.logical_publication)
        if self.limit < 1:
            raise ValueError("limit must be positive")
        if self.retry_max_attempts < 0:
            raise ValueError("retry_max_attempts must not be negative")
        # accept plain strings from callers
        object.__setattr__(self, "mode", OutboxMode(self.mode))
        if self.topic_filter is not None:
            object.__setattr__(self, "topic_filter", tuple(self.topic_filter))

    @property
    def table_name(self) -> str:
        """Physical table this instance works against."""
        if self.partition is None:
            return self.table
        return f"{self.table}_{self.partition}"

    def with_overrides(self, **overrides: Any) -> OutboxOptions:
        return replace(self, **overrides)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> OutboxOptions:
        values: dict[str, Any] = {
            "table": settings.OUTBOX_TABLE,
            "mode": OutboxMode(settings.OUTBOX_MODE),
            "poll_interval_ms": settings.OUTBOX_POLL_INTERVAL_MS,
            "limit": settings.OUTBOX_LIMIT,
            "partition": settings.OUTBOX_PARTITION,
            "topic_filter": settings.OUTBOX_TOPIC_FILTER,
            "concurrency": settings.OUTBOX_CONCURRENCY,
            "retry_delay_seconds": settings.OUTBOX_RETRY_DELAY_SECONDS,
            "retry_max_attempts": settings.OUTBOX_RETRY_MAX_ATTEMPTS,
            "clear_error_on_success": settings.OUTBOX_CLEAR_ERROR_ON_SUCCESS,
            "respond_interval_ms": settings.OUTBOX_RESPOND_INTERVAL_MS,
            "init_sync_batch_size": settings.OUTBOX_INIT_SYNC_BATCH_SIZE,
            "initial_event_id": settings.OUTBOX_INITIAL_EVENT_ID,
            "notify_channel": settings.OUTBOX_NOTIFY_CHANNEL,
            "logical_slot": settings.OUTBOX_LOGICAL_SLOT,
            "logical_publication": settings.OUTBOX_LOGICAL_PUBLICATION,
            "logical_interval_ms": settings.OUTBOX_LOGICAL_INTERVAL_MS,
        }
        values.update(overrides)
        return cls(**values)
