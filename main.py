"""
Quit-Plan Engine -- Application Entry Point.

Starts the FastAPI server via uvicorn.

Usage:
    python main.py              # Development (reload with QUITPLAN_DEV_MODE=1)
    uvicorn main:app --host 0.0.0.0 --port 8000  # Production
"""

from __future__ import annotations

import os

import uvicorn

from src.api import create_app
from src.lib.logging import setup_logging
from src.models.database import init_db

setup_logging()
init_db()
app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("QUITPLAN_PORT", "8000"))
    host = os.getenv("QUITPLAN_HOST", "0.0.0.0")
    reload = os.getenv("QUITPLAN_DEV_MODE", "0") == "1"

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )
