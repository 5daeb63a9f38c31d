from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from trx_outbox.domain.entities.outbox_message import OutboxMessage


class JsonEncoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


def serialize_value(value: Any) -> str:
    return json.dumps(value, cls=JsonEncoder)


def serialize_message(message: OutboxMessage) -> dict[str, str]:
    """Flat string fields for brokers that only carry string maps."""
    fields = {
        "id": str(message.id),
        "topic": message.topic,
        "value": serialize_value(message.value),
        "context_id": repr(message.context_id),
    }
    if message.key is not None:
        fields["key"] = message.key
    if message.headers:
        fields["headers"] = serialize_value(message.headers)
    return fields
