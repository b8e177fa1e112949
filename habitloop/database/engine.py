"""
habitloop.database.engine — Engine, Sessions & the Sync→Async Bridge
=====================================================================

Every service in :mod:`habitloop.services` is plain synchronous
SQLAlchemy: one function, one session, one transaction.  The API and the
participation coordinator are ``asyncio`` code, so they never call those
functions directly; they hand them to :func:`run_db`, which executes
them on the default thread pool and awaits the result.  Domain errors
raised on the worker thread surface unchanged in the awaiting
coroutine.

Usage::

    from habitloop.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()               # DATABASE_URL from the env
    init_db(engine)                           # dev / test schema bootstrap

    balance = await run_db(ledger_service.get_balance, engine, user_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from habitloop.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Server pool: a handful of warm connections, bounded burst, pre-ping so
# a restarted PostgreSQL doesn't hand out dead sockets.
SERVER_POOL_OPTIONS = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_timeout": 10,
    "pool_recycle": 3600,
}


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build the process-wide :class:`Engine`.

    *url* defaults to ``DATABASE_URL``.  SQLite URLs (tests, local
    tinkering) skip the pool options and allow cross-thread use, since
    :func:`run_db` runs queries on worker threads.

    Raises
    ------
    RuntimeError
        Neither *url* nor ``DATABASE_URL`` is set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set; "
            "put a PostgreSQL URL in .env (see .env.example)."
        )

    if url.startswith("sqlite"):
        engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(url, echo=False, **SERVER_POOL_OPTIONS)
    logger.info("Engine ready for %s", engine.url.host or engine.url.database)
    return engine


def init_db(engine: Engine) -> None:
    """``create_all`` for every HabitLoop table; existing tables are left alone.

    Deployed databases are migrated with ``alembic upgrade head``; this
    is the bootstrap for dev and test databases.
    """
    Base.metadata.create_all(engine)
    logger.info("Schema present on %s", engine.url.database)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """One unit of work: commit if the block finishes, roll back if it raises.

    ``expire_on_commit=False`` keeps loaded attributes readable after the
    block, so services can return ORM rows to their callers.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a blocking store call without stalling the event loop.

    ``await run_db(fn, engine, *args)`` is ``fn(engine, *args)`` executed
    via :func:`asyncio.to_thread`.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
