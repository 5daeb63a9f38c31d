"""Entrypoint: python -m trx_outbox"""
from __future__ import annotations

import uvicorn


def main() -> None:
    uvicorn.run(
        "trx_outbox.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )


if __name__ == "__main__":
    main()
