"""Per-row results returned by a dispatch adapter.

``send()`` returns one result per input row, in input order. The engine
correlates them positionally, so a result list must never be reordered or
shortened.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, TypeAlias

from trx_outbox.domain.value_objects.enums import SettleStatus


@dataclass(frozen=True, slots=True)
class Fulfilled:
    value: Any = None
    meta: dict[str, Any] | None = None
    error: str | None = None
    error_approved: bool = False

    status: ClassVar[SettleStatus] = SettleStatus.FULFILLED


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: Any = None
    meta: dict[str, Any] | None = None
    error: str | None = None
    error_approved: bool = False

    status: ClassVar[SettleStatus] = SettleStatus.REJECTED


SettleResult: TypeAlias = Fulfilled | Rejected


@dataclass(frozen=True, slots=True)
class HandlerResult:
    """Value returned by a per-row handler that also wants to attach meta."""

    value: Any = None
    meta: dict[str, Any] | None = None
