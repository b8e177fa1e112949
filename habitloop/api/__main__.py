"""
habitloop.api.__main__ — Entry point for ``python -m habitloop.api``
=====================================================================

Wiring:
1. Load .env (secrets, DATABASE_URL).
2. Configure logging.
3. Create the SQLAlchemy engine and ensure tables exist.
4. Serve the FastAPI app with uvicorn (the app's lifespan starts the
   PG chat listener).

Run with::

    uv run python -m habitloop.api
"""

from __future__ import annotations

import logging

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
logger = logging.getLogger("habitloop")


def main() -> None:
    """Bootstrap and serve the HabitLoop API."""
    load_dotenv()

    from habitloop.api.deps import get_config, get_engine
    from habitloop.database.engine import init_db

    cfg = get_config()
    init_db(get_engine())

    logger.info("Starting %s API on port %d…", cfg.app_name, cfg.api_port)
    uvicorn.run("habitloop.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
