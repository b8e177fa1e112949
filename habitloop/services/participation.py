"""
habitloop.services.participation — Participation Coordinator
=============================================================

The async entry point the API (or any other boundary layer) talks to.
It owns no state of its own: every store call runs on a worker thread
through :func:`run_db`, and live chat goes through the shared
:class:`ChatHub`.

Responsibilities:

* join / leave / create against the membership store and catalog;
* ``complete_with_proof`` — membership-checked completion through the
  Completion Recorder, never around it;
* ``joined_challenges_with_today_status`` — the habit-list read model;
* chat: post (then fan out locally) and ``open_chat``, which subscribes
  *before* reading history, de-duplicates by sequence number and
  backfills any sequence gap from the store;
* the display profile (username, avatar) shown next to chat messages.

Transport failures from the store surface as :class:`StoreUnavailable`;
domain errors pass through untouched.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError

from habitloop.config import HabitLoopConfig, default_config
from habitloop.database.engine import run_db
from habitloop.engine.chat_hub import ChatHub, Subscription
from habitloop.engine.events import ChatEvent
from habitloop.errors import NotMember, StoreUnavailable
from habitloop.services import (
    catalog_service,
    chat_service,
    completion_service,
    ledger_service,
    membership_service,
    profile_service,
    stats_service,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from habitloop.database.models import Challenge, Completion, Membership

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def _post_and_publish(
    engine: Engine, hub: ChatHub, challenge_id: int, user_id: str, text: str
) -> ChatEvent:
    event = chat_service.post_message(engine, challenge_id, user_id, text)
    hub.publish(event)
    return event


@dataclass(frozen=True, slots=True)
class HabitStatus:
    """One joined challenge as shown in the habit list."""

    challenge: Challenge
    joined_at: datetime | None
    completed_today: bool


# ---------------------------------------------------------------------------
# Chat session: one open chat view
# ---------------------------------------------------------------------------
class ChatSession:
    """History plus an async stream of live messages for one open chat view.

    Hub callbacks may fire on any thread; they are marshalled onto the
    owning event loop with ``call_soon_threadsafe``, which keeps FIFO
    order.  Gap backfills run as tasks owned by the session and are
    cancelled when the view closes.
    """

    def __init__(self, challenge_id: int, loop: asyncio.AbstractEventLoop) -> None:
        self.challenge_id = challenge_id
        self.history: list[ChatEvent] = []
        self._loop = loop
        self._queue: asyncio.Queue[ChatEvent] = asyncio.Queue()
        self._backfills: set[asyncio.Task] = set()
        self._closed = False

    def deliver(self, event: ChatEvent) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def spawn(self, factory: Callable[[], Coroutine[Any, Any, None]]) -> None:
        """Run ``factory()`` on the session's loop (callable from any thread)."""

        def _start() -> None:
            if self._closed:
                return
            task = self._loop.create_task(factory())
            self._backfills.add(task)
            task.add_done_callback(self._backfills.discard)

        self._loop.call_soon_threadsafe(_start)

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._backfills)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def receive(self, timeout: float | None = None) -> ChatEvent:
        """Wait for the next live message (``TimeoutError`` after *timeout*)."""
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def __aiter__(self) -> ChatSession:
        return self

    async def __anext__(self) -> ChatEvent:
        return await self.receive()


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------
class ParticipationCoordinator:
    """Async façade over the participation & rewards core."""

    def __init__(
        self,
        engine: Engine,
        hub: ChatHub,
        config: HabitLoopConfig | None = None,
    ) -> None:
        self._engine = engine
        self._hub = hub
        self._config = config or default_config()

    @property
    def hub(self) -> ChatHub:
        return self._hub

    async def _db(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await run_db(func, *args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            logger.exception("Store call %s failed", getattr(func, "__name__", func))
            raise StoreUnavailable(str(exc.orig or exc)) from exc

    # -------------------------------------------------------------------
    # Catalog & membership
    # -------------------------------------------------------------------
    async def create_challenge(
        self,
        creator_id: str,
        title: str,
        description: str | None = None,
        category: str | None = None,
    ) -> Challenge:
        return await self._db(
            catalog_service.create_challenge,
            self._engine, creator_id, title, description, category,
        )

    async def list_challenges(self, search_text: str = "") -> list[Challenge]:
        return await self._db(catalog_service.list_public, self._engine, search_text)

    async def get_challenge(self, challenge_id: int) -> Challenge:
        return await self._db(catalog_service.get_challenge, self._engine, challenge_id)

    async def join(self, user_id: str, challenge_id: int) -> Membership:
        return await self._db(membership_service.join, self._engine, challenge_id, user_id)

    async def leave(self, user_id: str, challenge_id: int) -> None:
        await self._db(membership_service.leave, self._engine, challenge_id, user_id)

    async def _require_member(self, user_id: str, challenge_id: int) -> None:
        if not await self._db(
            membership_service.check_membership, self._engine, challenge_id, user_id
        ):
            raise NotMember(f"User {user_id} is not a member of challenge {challenge_id}")

    # -------------------------------------------------------------------
    # Completions
    # -------------------------------------------------------------------
    async def joined_challenges_with_today_status(
        self, user_id: str, day: date | None = None
    ) -> list[HabitStatus]:
        """Every joined challenge with whether it is already done on *day*."""
        day = day or date.today()
        joined = await self._db(membership_service.list_memberships, self._engine, user_id)
        done = await self._db(
            completion_service.completions_for_user, self._engine, user_id, day
        )
        done_ids = {view.completion.challenge_id for view in done}
        return [
            HabitStatus(
                challenge=item.challenge,
                joined_at=item.joined_at,
                completed_today=item.challenge.id in done_ids,
            )
            for item in joined
        ]

    async def complete_with_proof(
        self,
        user_id: str,
        challenge_id: int,
        proof: str | bytes | None,
        day: date | None = None,
    ) -> Completion:
        """The single completion entry point.

        Membership is checked inside the recorder's transaction, next to
        the constraint-guarded insert.
        """
        return await self._db(
            completion_service.record_completion,
            self._engine, challenge_id, user_id, proof, day,
            points=self._config.points_per_completion,
        )

    async def completions_on(
        self, user_id: str, day: date | None = None
    ) -> list[completion_service.CompletionView]:
        return await self._db(
            completion_service.completions_for_user,
            self._engine, user_id, day or date.today(),
        )

    async def is_completed_today(
        self, user_id: str, challenge_id: int, day: date | None = None
    ) -> bool:
        return await self._db(
            completion_service.is_completed_today,
            self._engine, user_id, challenge_id, day,
        )

    # -------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------
    async def balance(self, user_id: str) -> ledger_service.Balance:
        return await self._db(ledger_service.get_balance, self._engine, user_id)

    async def redeem(self, user_id: str) -> Decimal:
        return await self._db(
            ledger_service.redeem,
            self._engine, user_id,
            unit_points=self._config.redemption_unit_points,
            unit_value=self._config.redemption_unit_value,
        )

    # -------------------------------------------------------------------
    # Profile
    # -------------------------------------------------------------------
    async def profile(self, user_id: str) -> profile_service.ProfileView:
        return await self._db(profile_service.get_profile, self._engine, user_id)

    async def update_profile(self, user_id: str, **changes) -> profile_service.ProfileView:
        """Change ``username`` and/or ``avatar_url``; omitted fields are kept."""
        return await self._db(
            profile_service.update_profile, self._engine, user_id, **changes
        )

    # -------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------
    async def post_message(self, user_id: str, challenge_id: int, text: str) -> ChatEvent:
        """Store a message and fan it out locally.

        The publish runs on the same worker thread right after the commit,
        so cancelling the awaiting task cannot leave a stored message
        unpublished.
        """
        return await self._db(
            _post_and_publish, self._engine, self._hub, challenge_id, user_id, text
        )

    async def chat_history(self, user_id: str, challenge_id: int) -> list[ChatEvent]:
        await self._require_member(user_id, challenge_id)
        return await self._db(chat_service.history, self._engine, challenge_id)

    @asynccontextmanager
    async def open_chat(self, user_id: str, challenge_id: int) -> AsyncIterator[ChatSession]:
        """Open a chat view: history first, then live messages.

        The subscription is taken before history is read and primed with
        the last history sequence, so nothing falls between the two and
        nothing is shown twice.  When live events skip a sequence number
        (a message committed elsewhere whose publish never reached this
        process) the missing rows are read back from the store.  The
        subscription is released on every exit path.
        """
        await self._require_member(user_id, challenge_id)

        chat = ChatSession(challenge_id, asyncio.get_running_loop())

        async def backfill(sub: Subscription, cursor: int) -> None:
            try:
                missing = await self._db(
                    chat_service.history, self._engine, challenge_id, cursor
                )
            except StoreUnavailable:
                sub.release_gap_report()
                raise
            logger.debug(
                "Backfilled %d chat message(s) after seq %d in challenge %d",
                len(missing), cursor, challenge_id,
            )
            for event in missing:
                sub.offer(event)

        def on_gap(sub: Subscription, cursor: int) -> None:
            chat.spawn(lambda: backfill(sub, cursor))

        subscription = self._hub.subscribe(challenge_id, chat.deliver, on_gap=on_gap)
        try:
            chat.history = await self._db(chat_service.history, self._engine, challenge_id)
            subscription.prime(chat.history[-1].seq if chat.history else 0)
            yield chat
        finally:
            subscription.unsubscribe()
            await chat.close()

    # -------------------------------------------------------------------
    # Read models
    # -------------------------------------------------------------------
    async def dashboard(
        self, user_id: str, day: date | None = None
    ) -> stats_service.DashboardSummary:
        return await self._db(stats_service.dashboard_summary, self._engine, user_id, day)

    async def weekly_stats(
        self, user_id: str, day: date | None = None
    ) -> stats_service.WeeklyStats:
        return await self._db(stats_service.weekly_stats, self._engine, user_id, day)

    async def completion_calendar(self, user_id: str) -> list[date]:
        return await self._db(stats_service.completion_calendar, self._engine, user_id)
