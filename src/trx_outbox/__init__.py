"""Transactional outbox for PostgreSQL on asyncio."""
from __future__ import annotations

from trx_outbox.application.dispatch.base import HandlerAdapter, HandlerContext, with_diagnostics
from trx_outbox.application.dispatch.grouped import GroupedAdapter
from trx_outbox.application.dispatch.grouped_async import GroupedAsyncAdapter
from trx_outbox.application.dispatch.parallel import ParallelAdapter
from trx_outbox.application.dispatch.serial import SerialAdapter
from trx_outbox.application.exceptions import (
    AdapterContractError,
    HandlerRejection,
    InvalidTransitionError,
    LockNotAvailableError,
    MessageFailedError,
    NotStartedError,
    OutboxError,
)
from trx_outbox.application.options import OutboxOptions
from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.enums import OutboxMode, TriggerEvent, TriggerState
from trx_outbox.domain.value_objects.settle import Fulfilled, HandlerResult, Rejected, SettleResult
from trx_outbox.services.outbox import Outbox

__version__ = "0.1.0"

__all__ = [
    "AdapterContractError",
    "Fulfilled",
    "GroupedAdapter",
    "GroupedAsyncAdapter",
    "HandlerAdapter",
    "HandlerContext",
    "HandlerRejection",
    "HandlerResult",
    "InvalidTransitionError",
    "LockNotAvailableError",
    "MessageFailedError",
    "NotStartedError",
    "Outbox",
    "OutboxError",
    "OutboxMessage",
    "OutboxMode",
    "OutboxOptions",
    "ParallelAdapter",
    "Rejected",
    "SerialAdapter",
    "SettleResult",
    "TriggerEvent",
    "TriggerState",
    "with_diagnostics",
]
