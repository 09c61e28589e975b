from __future__ import annotations

"""Run the API under uvicorn: ``python -m src.coauthor.api`` or ``coauthor-api``."""

import logging
import os

import uvicorn

from .main import app

logger = logging.getLogger("coauthor.api")


def serve() -> None:
    host = os.getenv("COAUTHOR_HOST", "127.0.0.1")
    port = int(os.getenv("COAUTHOR_PORT", "8000"))
    logger.info("api_starting host=%s port=%s", host, port)
    uvicorn.run(app, host=host, port=port, log_level=os.getenv("COAUTHOR_LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    serve()
