"""
habitloop.services.profile_service — Display profile
=====================================================

The user-editable part of the ``profiles`` row: the display name shown
next to chat messages and an avatar URL.  Balance columns are owned by
:mod:`habitloop.services.ledger_service` and never touched here.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from habitloop.database.engine import get_session
from habitloop.database.models import Profile
from habitloop.errors import InvalidInput
from habitloop.services.ledger_service import ensure_profile_in_session

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MAX_USERNAME_LENGTH = 100
MAX_AVATAR_URL_LENGTH = 500
_AVATAR_URL_RE = re.compile(r"^https?://\S+$")

# Sentinel for "leave this field as it is".
UNCHANGED = object()


@dataclass(frozen=True, slots=True)
class ProfileView:
    user_id: str
    username: str | None
    avatar_url: str | None

    @classmethod
    def from_row(cls, row: Profile) -> ProfileView:
        return cls(user_id=row.user_id, username=row.username, avatar_url=row.avatar_url)


def _clean_username(username: str | None) -> str | None:
    if username is None:
        return None
    username = username.strip()
    if not username:
        raise InvalidInput("Username must not be blank")
    if len(username) > MAX_USERNAME_LENGTH:
        raise InvalidInput(f"Username is longer than {MAX_USERNAME_LENGTH} characters")
    return username


def _clean_avatar_url(avatar_url: str | None) -> str | None:
    if avatar_url is None or not avatar_url.strip():
        return None
    avatar_url = avatar_url.strip()
    if len(avatar_url) > MAX_AVATAR_URL_LENGTH or not _AVATAR_URL_RE.match(avatar_url):
        raise InvalidInput("Avatar URL must be an http(s) URL")
    return avatar_url


def get_profile(engine: Engine, user_id: str) -> ProfileView:
    """The caller's profile; an unknown user gets an empty one."""
    with Session(engine) as session:
        row = session.get(Profile, user_id)
        if row is None:
            return ProfileView(user_id=user_id, username=None, avatar_url=None)
        return ProfileView.from_row(row)


def update_profile(
    engine: Engine,
    user_id: str,
    *,
    username: str | None | object = UNCHANGED,
    avatar_url: str | None | object = UNCHANGED,
) -> ProfileView:
    """Set the display name and/or avatar, creating the profile if needed.

    Fields left as :data:`UNCHANGED` keep their stored value; ``None``
    clears them.  Chat messages pick the new name up on their next read.
    """
    values = {}
    if username is not UNCHANGED:
        values["username"] = _clean_username(username)
    if avatar_url is not UNCHANGED:
        values["avatar_url"] = _clean_avatar_url(avatar_url)

    with get_session(engine) as session:
        ensure_profile_in_session(session, user_id)
        row = session.get(Profile, user_id)
        for field, value in values.items():
            setattr(row, field, value)
        session.flush()
        view = ProfileView.from_row(row)

    logger.info("Profile of %s updated (%s)", user_id, ", ".join(values) or "no changes")
    return view
