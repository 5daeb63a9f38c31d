"""Root conftest: seeds the environment from .env.test before trx_outbox.config is imported.

Put ``TRX_OUTBOX_TEST_DSN=postgresql+asyncpg://...`` there to enable the
live PostgreSQL tests. Variables already set in the environment win.
"""
from __future__ import annotations

import os
from pathlib import Path

_env_test = Path(__file__).resolve().parent / ".env.test"


def _load(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        line = line.removeprefix("export ").strip()
        key, sep, value = line.partition("=")
        if not sep:
            continue
        values[key.strip()] = value.strip().strip("'\"")
    return values


if _env_test.exists():
    for _key, _value in _load(_env_test).items():
        os.environ.setdefault(_key, _value)
