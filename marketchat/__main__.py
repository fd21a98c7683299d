"""
marketchat.__main__ — Entry point for ``python -m marketchat``
================================================================

Wiring:
1. Load .env (secrets).
2. Configure logging.
3. Serve the FastAPI app with uvicorn.

Run with::

    python -m marketchat
"""

from __future__ import annotations

import logging
import os

import uvicorn
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("marketchat")


def main() -> None:
    """Bootstrap and run the chat service."""
    load_dotenv()

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting marketchat on %s:%d", host, port)
    uvicorn.run("marketchat.api.main:app", host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
