"""
habitloop.api.deps — FastAPI dependency injection
==================================================

The core never authenticates.  This module is the boundary that turns
a bearer JWT (issued by the external auth provider, HS256, ``sub`` =
user id) into the ``user_id`` every core operation takes.

The signing secret is checked once, at import: a missing, short or
placeholder ``JWT_SECRET`` stops the API from starting at all.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from habitloop.config import HabitLoopConfig, default_config, load_config
from habitloop.database.engine import create_db_engine
from habitloop.engine.chat_hub import ChatHub
from habitloop.services.participation import ParticipationCoordinator

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
MIN_SECRET_LENGTH = 32

# Placeholders that must never sign real tokens.
PLACEHOLDER_SECRETS = frozenset({
    "",
    "dev",
    "secret",
    "change-me",
    "changeme",
    "habitloop-dev-secret-change-me",
})


def _load_jwt_secret() -> str:
    """Return ``JWT_SECRET``, or raise :class:`RuntimeError` if it is unusable."""
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET is missing. Set it in .env to the HS256 secret "
            "shared with the auth provider."
        )
    if secret in PLACEHOLDER_SECRETS:
        raise RuntimeError(f"JWT_SECRET is a placeholder value ({secret!r}).")
    if len(secret) < MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET has {len(secret)} characters; "
            f"at least {MIN_SECRET_LENGTH} are required."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


# ---------------------------------------------------------------------------
# Process-wide singletons
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> HabitLoopConfig:
    path = Path(os.getenv("HABITLOOP_CONFIG", "config.yaml"))
    if not path.exists():
        logger.warning("%s not found, using built-in defaults", path)
        return default_config()
    return load_config(path)


@lru_cache(maxsize=1)
def get_hub() -> ChatHub:
    return ChatHub()


def get_coordinator(
    engine: Annotated[Engine, Depends(get_engine)],
    hub: Annotated[ChatHub, Depends(get_hub)],
    cfg: Annotated[HabitLoopConfig, Depends(get_config)],
) -> ParticipationCoordinator:
    return ParticipationCoordinator(engine, hub, cfg)


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------
def decode_user_token(token: str) -> str:
    """Return the user id carried by *token*; raise 401 if it is invalid."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return str(user_id)


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Validate the bearer JWT and return the caller's user id."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    return decode_user_token(authorization.split(" ", 1)[1])
