"""Run the gateway with uvicorn: ``python -m chatgate``."""

from __future__ import annotations

import logging
import os

import uvicorn

from chatgate.server import create_app


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("CHATGATE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        create_app(),
        host=os.environ.get("CHATGATE_HOST", "127.0.0.1"),
        port=int(os.environ.get("CHATGATE_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
