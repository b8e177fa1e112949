"""
tests/test_database.py — Engine, Session Helper & Async Bridge
===============================================================
"""

from __future__ import annotations

import asyncio
import os
import threading
from unittest.mock import patch

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from habitloop.database.engine import create_db_engine, get_session, init_db, run_db
from habitloop.database.models import Challenge, Profile


class TestCreateEngine:
    def test_requires_database_url(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("DATABASE_URL", None)
            with pytest.raises(RuntimeError, match="DATABASE_URL is not set"):
                create_db_engine()

    def test_sqlite_url_and_init(self, tmp_path):
        engine = create_db_engine(f"sqlite:///{tmp_path / 'x.db'}")
        init_db(engine)
        init_db(engine)  # idempotent
        tables = set(inspect(engine).get_table_names())
        assert {"challenges", "challenge_members", "completions", "profiles", "chat_messages"} <= tables
        engine.dispose()


class TestGetSession:
    def test_commits_on_success(self, db_engine):
        with get_session(db_engine) as session:
            session.add(Profile(user_id="alice"))
        with Session(db_engine) as session:
            assert session.get(Profile, "alice") is not None

    def test_rolls_back_on_error(self, db_engine):
        with pytest.raises(ValueError):
            with get_session(db_engine) as session:
                session.add(Challenge(title="Ghost", creator_id="alice"))
                session.flush()
                raise ValueError("abort")
        with Session(db_engine) as session:
            assert session.scalars(select(Challenge)).all() == []

    def test_check_constraint_protects_points(self, db_engine):
        with pytest.raises(IntegrityError):
            with get_session(db_engine) as session:
                session.add(Profile(user_id="alice", points=-1))


class TestRunDb:
    def test_runs_on_worker_thread(self):
        main_thread = threading.get_ident()

        def _work(a, b=0):
            return a + b, threading.get_ident()

        loop = asyncio.new_event_loop()
        try:
            total, worker = loop.run_until_complete(run_db(_work, 2, b=3))
        finally:
            loop.close()
        assert total == 5
        assert worker != main_thread
