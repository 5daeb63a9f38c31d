from __future__ import annotations

import logging
import traceback
from collections.abc import Mapping
from typing import Any

from trx_outbox.application.exceptions import AdapterContractError
from trx_outbox.application.options import OutboxOptions
from trx_outbox.application.repositories.outbox import OutboxOutcome
from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.settle import Fulfilled, Rejected, SettleResult

logger = logging.getLogger(__name__)


def normalize_error(reason: Any) -> str:
    """Render an arbitrary failure reason as storable text.

    Exceptions keep their traceback when they have one, so the stored text
    always contains ``ExcType: message``.
    """
    if isinstance(reason, BaseException):
        if reason.__traceback__ is not None:
            return "".join(traceback.format_exception(reason)).rstrip()
        return "".join(traceback.format_exception_only(reason)).rstrip()
    if reason is None:
        return "None"
    return str(reason)


def wrap_response(value: Any) -> dict[str, Any] | None:
    """Responses are stored as JSON objects; anything else goes under ``r``."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        return dict(value)
    if hasattr(value, "model_dump"):
        return wrap_response(value.model_dump(mode="json"))
    return {"r": value}


def _should_retry(message: OutboxMessage, reason: Any, options: OutboxOptions) -> bool:
    if message.attempts >= options.retry_max_attempts:
        return False
    try:
        return bool(options.retry_predicate(reason))
    except Exception:
        logger.exception("retry_predicate failed for message %d, not retrying", message.id)
        return False


def build_outcome(
    message: OutboxMessage,
    result: SettleResult,
    options: OutboxOptions,
) -> OutboxOutcome:
    if isinstance(result, Fulfilled):
        return OutboxOutcome(
            id=message.id,
            succeeded=True,
            retry=False,
            response=wrap_response(result.value),
            error=result.error,
            meta=result.meta,
            error_approved=result.error_approved,
        )
    if isinstance(result, Rejected):
        return OutboxOutcome(
            id=message.id,
            succeeded=False,
            retry=_should_retry(message, result.reason, options),
            response=None,
            error=result.error or normalize_error(result.reason),
            meta=result.meta,
            error_approved=result.error_approved,
        )
    raise AdapterContractError(f"Unexpected settle result {result!r} for message {message.id}")
