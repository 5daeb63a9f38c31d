from __future__ import annotations

from typing import Any


class OutboxError(Exception):
    """Base outbox error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class LockNotAvailableError(OutboxError):
    """Another transaction holds the row locks of this batch (SQLSTATE 55P03)."""


class AdapterContractError(OutboxError):
    pass


class InvalidTransitionError(OutboxError):
    pass


class NotStartedError(OutboxError):
    pass


class MessageFailedError(OutboxError):
    """Raised to a ``wait_for`` caller when the row was settled with an error."""

    def __init__(self, message_id: int, error: str) -> None:
        self.message_id = message_id
        self.error = error
        super().__init__(error)


class HandlerRejection(Exception):
    """Raised by a handler to reject its row with meta or an explicit error text.

    ``approved=True`` is stored as ``error_approved`` on the row.
    """

    def __init__(
        self,
        reason: object = None,
        *,
        meta: dict[str, Any] | None = None,
        error: str | None = None,
        approved: bool = False,
    ) -> None:
        self.reason = reason
        self.meta = meta
        self.error = error
        self.approved = approved
        super().__init__(reason)
