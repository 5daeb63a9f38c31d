from __future__ import annotations

from enum import StrEnum


class OutboxMode(StrEnum):
    SHORT_POLLING = "short-polling"
    NOTIFY = "notify"
    LOGICAL = "logical"


class TriggerState(StrEnum):
    IDLE = "idle"
    PROCESSING = "processing"
    IDLE_BUT_REPEAT_QUEUED = "idle_but_repeat_queued"


class TriggerEvent(StrEnum):
    POLL = "poll"
    NOTIFY = "notify"
    LOGICAL = "logical"
    MANUAL = "manual"


class SettleStatus(StrEnum):
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
