"""
tests/test_membership_service.py — Membership Store Tests
==========================================================

Join / leave / list against an in-memory SQLite database, with focus on
the ``member_count`` invariant and the unique-pair constraint.
"""

from __future__ import annotations

import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from habitloop.database.models import Challenge, Membership
from habitloop.errors import AlreadyMember, ChallengeNotFound, NotMember
from habitloop.services import membership_service


def _seed_challenge(engine, title: str = "Morning Run", is_public: bool = True) -> int:
    """Insert a challenge with no members and return its ID."""
    with Session(engine) as session:
        challenge = Challenge(
            title=title, creator_id="creator", is_public=is_public, member_count=0,
        )
        session.add(challenge)
        session.commit()
        return challenge.id


def _member_count(engine, challenge_id: int) -> int:
    with Session(engine) as session:
        return session.get(Challenge, challenge_id).member_count


def _membership_rows(engine, challenge_id: int) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(Membership)
            .where(Membership.challenge_id == challenge_id)
        )


class TestJoin:
    def test_join_creates_row_and_bumps_count(self, db_engine):
        cid = _seed_challenge(db_engine)
        membership = membership_service.join(db_engine, cid, "alice")

        assert membership.challenge_id == cid
        assert membership.user_id == "alice"
        assert membership.joined_at is not None
        assert _member_count(db_engine, cid) == 1

    def test_second_join_raises_and_leaves_count_alone(self, db_engine):
        cid = _seed_challenge(db_engine)
        membership_service.join(db_engine, cid, "alice")

        with pytest.raises(AlreadyMember):
            membership_service.join(db_engine, cid, "alice")

        assert _member_count(db_engine, cid) == 1
        assert _membership_rows(db_engine, cid) == 1

    def test_join_unknown_challenge(self, db_engine):
        with pytest.raises(ChallengeNotFound):
            membership_service.join(db_engine, 999, "alice")

    def test_join_private_challenge_is_refused(self, db_engine):
        cid = _seed_challenge(db_engine, is_public=False)
        with pytest.raises(ChallengeNotFound):
            membership_service.join(db_engine, cid, "alice")
        assert _member_count(db_engine, cid) == 0

    def test_count_tracks_many_members(self, db_engine):
        cid = _seed_challenge(db_engine)
        for user in ("alice", "bob", "carol"):
            membership_service.join(db_engine, cid, user)
        assert _member_count(db_engine, cid) == 3
        assert _membership_rows(db_engine, cid) == 3


class TestLeave:
    def test_leave_removes_row_and_decrements(self, db_engine):
        cid = _seed_challenge(db_engine)
        membership_service.join(db_engine, cid, "alice")
        membership_service.join(db_engine, cid, "bob")

        membership_service.leave(db_engine, cid, "alice")

        assert _member_count(db_engine, cid) == 1
        assert not membership_service.check_membership(db_engine, cid, "alice")
        assert membership_service.check_membership(db_engine, cid, "bob")

    def test_leave_when_not_member(self, db_engine):
        cid = _seed_challenge(db_engine)
        with pytest.raises(NotMember):
            membership_service.leave(db_engine, cid, "alice")
        assert _member_count(db_engine, cid) == 0

    def test_leave_twice(self, db_engine):
        cid = _seed_challenge(db_engine)
        membership_service.join(db_engine, cid, "alice")
        membership_service.leave(db_engine, cid, "alice")
        with pytest.raises(NotMember):
            membership_service.leave(db_engine, cid, "alice")
        assert _member_count(db_engine, cid) == 0

    def test_count_never_goes_negative(self, db_engine):
        """A drifted counter is floored at zero instead of violating the CHECK."""
        cid = _seed_challenge(db_engine)
        membership_service.join(db_engine, cid, "alice")
        with Session(db_engine) as session:
            session.get(Challenge, cid).member_count = 0
            session.commit()

        membership_service.leave(db_engine, cid, "alice")
        assert _member_count(db_engine, cid) == 0

    def test_rejoin_after_leave(self, db_engine):
        cid = _seed_challenge(db_engine)
        membership_service.join(db_engine, cid, "alice")
        membership_service.leave(db_engine, cid, "alice")
        membership_service.join(db_engine, cid, "alice")
        assert _member_count(db_engine, cid) == 1


class TestListMemberships:
    def test_lists_full_challenges_in_id_order(self, db_engine):
        first = _seed_challenge(db_engine, "Read 20 pages")
        second = _seed_challenge(db_engine, "Drink water")
        other = _seed_challenge(db_engine, "Not joined")
        membership_service.join(db_engine, second, "alice")
        membership_service.join(db_engine, first, "alice")
        membership_service.join(db_engine, other, "bob")

        joined = membership_service.list_memberships(db_engine, "alice")

        assert [j.challenge.id for j in joined] == [first, second]
        assert [j.challenge.title for j in joined] == ["Read 20 pages", "Drink water"]
        assert all(j.joined_at is not None for j in joined)

    def test_empty_for_unknown_user(self, db_engine):
        assert membership_service.list_memberships(db_engine, "nobody") == []


class TestConcurrentJoin:
    def test_racing_joins_produce_one_row(self, file_engine):
        """Two simultaneous joins: exactly one wins, the count stays at 1."""
        cid = _seed_challenge(file_engine)
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def _join():
            barrier.wait()
            try:
                membership_service.join(file_engine, cid, "alice")
                result = "joined"
            except AlreadyMember:
                result = "already"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=_join) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["already", "joined"]
        assert _membership_rows(file_engine, cid) == 1
        assert _member_count(file_engine, cid) == 1
