"""
habitloop.engine.chat_hub — Per-Challenge Chat Fan-out with PG LISTEN/NOTIFY
=============================================================================

Live chat delivery for open chat views.  Each viewer holds an explicit
:class:`Subscription` handle for one challenge; the hub fans every
published :class:`ChatEvent` out to all handles of that challenge.

Ordering and de-duplication live in the handle, keyed by the
per-challenge ``seq`` that the store hands out in commit order:

* events at or below the handle's cursor are dropped (duplicates from
  the NOTIFY path, or rows already shown from history);
* events that arrive ahead of a gap are held, and the handle reports the
  gap through its ``on_gap`` callback so the owner can backfill the
  missing rows from the store;
* an unprimed handle buffers everything until :meth:`Subscription.prime`
  tells it where history ended.

Because ``seq`` N is only handed out after N-1 committed, a gap always
means "committed but not (yet) published here", never "not written".

Cross-process delivery uses PostgreSQL LISTEN/NOTIFY: the insert
transaction issues ``NOTIFY chat_messages`` (fires on commit) and
:class:`ChatListener` republishes each notified row into the local hub.

Usage::

    hub = ChatHub()
    with hub.subscribe(challenge_id, on_message, after_seq=last_seen) as sub:
        ...
"""

from __future__ import annotations

import json
import logging
import random
import select as _select
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.orm import Session

from habitloop.engine.events import ChatEvent

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# The PG channel carrying newly inserted chat rows
CHAT_NOTIFY_CHANNEL = "chat_messages"

MessageCallback = Callable[[ChatEvent], None]
GapCallback = Callable[["Subscription", int], None]


# ---------------------------------------------------------------------------
# Subscription handle
# ---------------------------------------------------------------------------
class Subscription:
    """One viewer's live feed for one challenge.

    Delivery happens under the handle's lock, so callbacks for one handle
    never run concurrently and always run in ``seq`` order.  Once
    :meth:`unsubscribe` returns, the callback is not invoked again.

    ``on_gap(sub, cursor)`` is called (under the lock, so it must not
    block) once per stall: when held events exist but ``cursor + 1`` is
    missing.  The owner is expected to :meth:`offer` the rows after
    ``cursor`` from the store, or call :meth:`release_gap_report` to be
    asked again on the next arrival.
    """

    def __init__(
        self,
        hub: ChatHub,
        challenge_id: int,
        on_message: MessageCallback,
        after_seq: int | None = None,
        on_gap: GapCallback | None = None,
    ) -> None:
        self._hub = hub
        self.challenge_id = challenge_id
        self._on_message = on_message
        self._on_gap = on_gap
        self._cursor = after_seq
        self._pending: dict[int, ChatEvent] = {}
        self._gap_reported_at: int | None = None
        self._lock = threading.RLock()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def cursor(self) -> int | None:
        """Sequence number of the last delivered event (None until primed)."""
        return self._cursor

    @property
    def held(self) -> int:
        """Number of events waiting behind a gap."""
        return len(self._pending)

    def prime(self, last_seq: int) -> None:
        """Start delivering after *last_seq*, dropping anything at or below it."""
        with self._lock:
            if self._cursor is not None and self._cursor >= last_seq:
                return
            self._cursor = last_seq
            for seq in [s for s in self._pending if s <= last_seq]:
                del self._pending[seq]
            self._drain()
            self._check_gap()

    def offer(self, event: ChatEvent) -> None:
        """Accept one event from the hub (may be a duplicate or out of order)."""
        with self._lock:
            if not self._active:
                return
            if self._cursor is not None and event.seq <= self._cursor:
                return
            self._pending.setdefault(event.seq, event)
            if self._cursor is not None:
                self._drain()
                self._check_gap()

    def release_gap_report(self) -> None:
        """Forget that the current stall was reported (e.g. backfill failed)."""
        with self._lock:
            self._gap_reported_at = None

    def _drain(self) -> None:
        while self._active and self._cursor is not None:
            event = self._pending.pop(self._cursor + 1, None)
            if event is None:
                break
            self._cursor = event.seq
            try:
                self._on_message(event)
            except Exception:
                logger.exception(
                    "Chat subscriber callback failed (challenge %d, seq %d)",
                    self.challenge_id, event.seq,
                )

    def _check_gap(self) -> None:
        # After a drain, anything still pending sits behind a missing seq.
        if not (self._active and self._pending and self._on_gap is not None):
            return
        if self._gap_reported_at == self._cursor:
            return
        self._gap_reported_at = self._cursor
        logger.debug(
            "Chat gap after seq %d in challenge %d (%d held)",
            self._cursor, self.challenge_id, len(self._pending),
        )
        try:
            self._on_gap(self, self._cursor)
        except Exception:
            logger.exception("Chat gap handler failed (challenge %d)", self.challenge_id)

    def unsubscribe(self) -> None:
        """Stop delivery.  Safe to call any number of times."""
        with self._lock:
            if not self._active:
                return
            self._active = False
            self._pending.clear()
        self._hub._remove(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return (
            f"<Subscription challenge={self.challenge_id} cursor={self._cursor} "
            f"held={len(self._pending)} active={self._active}>"
        )


# ---------------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------------
class ChatHub:
    """Thread-safe registry of live subscriptions, keyed by challenge.

    Publishes arrive from DB worker threads and the NOTIFY listener
    thread; the registry lock only guards membership of the per-challenge
    sets, delivery itself runs outside it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[int, set[Subscription]] = {}

    def subscribe(
        self,
        challenge_id: int,
        on_message: MessageCallback,
        *,
        after_seq: int | None = None,
        on_gap: GapCallback | None = None,
    ) -> Subscription:
        """Register *on_message* for every later event of *challenge_id*.

        With ``after_seq=None`` the handle buffers until
        :meth:`Subscription.prime` is called.
        """
        sub = Subscription(self, challenge_id, on_message, after_seq, on_gap)
        with self._lock:
            self._subscriptions.setdefault(challenge_id, set()).add(sub)
        logger.debug("Chat subscription opened for challenge %d", challenge_id)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(sub.challenge_id)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._subscriptions[sub.challenge_id]
        logger.debug("Chat subscription closed for challenge %d", sub.challenge_id)

    def publish(self, event: ChatEvent) -> int:
        """Fan *event* out to every subscription of its challenge.

        Returns the number of subscriptions it was offered to.
        """
        with self._lock:
            targets = list(self._subscriptions.get(event.challenge_id, ()))
        for sub in targets:
            sub.offer(event)
        return len(targets)

    def subscriber_count(self, challenge_id: int | None = None) -> int:
        with self._lock:
            if challenge_id is not None:
                return len(self._subscriptions.get(challenge_id, ()))
            return sum(len(s) for s in self._subscriptions.values())


# ---------------------------------------------------------------------------
# NOTIFY helpers
# ---------------------------------------------------------------------------
def notify_before_commit(session: Session, event: ChatEvent) -> None:
    """Queue a NOTIFY for *event* inside the current transaction.

    PostgreSQL delivers it only if (and when) the transaction commits.
    Other dialects have no NOTIFY; the call is skipped there.
    """
    if session.get_bind().dialect.name != "postgresql":
        return
    payload = json.dumps(
        {"id": event.id, "challenge_id": event.challenge_id, "seq": event.seq}
    )
    session.execute(
        text("SELECT pg_notify(:channel, :payload)"),
        {"channel": CHAT_NOTIFY_CHANNEL, "payload": payload},
    )


# ---------------------------------------------------------------------------
# Listener: PG LISTEN → hub
# ---------------------------------------------------------------------------
class ChatListener:
    """Background thread that republishes NOTIFY'd chat rows into a hub.

    One raw psycopg2 connection LISTENs on :data:`CHAT_NOTIFY_CHANNEL`.
    A dropped connection is re-opened after an exponentially growing,
    jittered delay; after ``max_reconnect_attempts`` consecutive failures
    the listener marks itself :attr:`failed` and stops.  Live chat then
    only reaches viewers in this process, and subscribers recover any
    rows they miss through their gap backfill.
    """

    POLL_INTERVAL = 5.0

    def __init__(
        self,
        engine: Engine,
        hub: ChatHub,
        loader: Callable[[Engine, int], ChatEvent | None],
        *,
        max_reconnect_attempts: int = 10,
        base_backoff: float = 1.0,
        max_backoff: float = 60.0,
    ) -> None:
        self._engine = engine
        self._hub = hub
        self._loader = loader
        self._max_reconnect_attempts = max_reconnect_attempts
        self._base_backoff = base_backoff
        self._max_backoff = max_backoff
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()
        self._healthy = False
        self._failed = False

    @property
    def healthy(self) -> bool:
        """True while the LISTEN connection is up."""
        return self._healthy and not self._failed

    @property
    def failed(self) -> bool:
        """True once the listener exhausted its reconnect attempts."""
        return self._failed

    # -------------------------------------------------------------------
    # Payload handling
    # -------------------------------------------------------------------
    def dispatch(self, raw_payload: str) -> bool:
        """Load the row named by a NOTIFY payload and publish it.

        Returns True if an event was published.
        """
        try:
            data = json.loads(raw_payload)
            message_id = int(data["id"])
        except (json.JSONDecodeError, TypeError, KeyError, ValueError):
            logger.warning("Invalid chat NOTIFY payload: %s", raw_payload)
            return False

        event = self._loader(self._engine, message_id)
        if event is None:
            logger.warning("Chat message %d from NOTIFY not found", message_id)
            return False
        self._hub.publish(event)
        return True

    # -------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------
    def _dsn(self) -> str:
        # libpq wants a plain postgresql:// URL with the real password.
        return self._engine.url.set(drivername="postgresql").render_as_string(
            hide_password=False
        )

    def _connect(self):
        import psycopg2

        conn = psycopg2.connect(self._dsn())
        conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute(f"LISTEN {CHAT_NOTIFY_CHANNEL};")
        return conn

    def _pump(self, conn) -> None:
        """Dispatch notifications until shutdown; connection errors propagate."""
        while not self._shutdown_event.is_set():
            readable, _, _ = _select.select([conn], [], [], self.POLL_INTERVAL)
            if not readable:
                continue
            conn.poll()
            while conn.notifies:
                payload = conn.notifies.pop(0).payload or ""
                try:
                    self.dispatch(payload)
                except Exception:
                    # A bad row must not take the connection down.
                    logger.exception("Error handling chat NOTIFY: %s", payload)

    def _retry_delay(self, attempt: int) -> float:
        backoff = min(self._base_backoff * (2 ** (attempt - 1)), self._max_backoff)
        return backoff + random.uniform(0, backoff * 0.5)

    def _run(self) -> None:
        failures = 0
        while not self._shutdown_event.is_set():
            conn = None
            try:
                conn = self._connect()
                failures = 0
                self._healthy = True
                logger.info("PG LISTEN started on channel '%s'", CHAT_NOTIFY_CHANNEL)
                self._pump(conn)
            except Exception:
                self._healthy = False
                failures += 1
                if failures >= self._max_reconnect_attempts:
                    logger.critical(
                        "PG LISTEN gave up after %d failures; live chat limited "
                        "to this process.",
                        failures,
                    )
                    self._failed = True
                    return
                delay = self._retry_delay(failures)
                logger.exception(
                    "PG LISTEN failed (%d/%d), retrying in %.1fs",
                    failures, self._max_reconnect_attempts, delay,
                )
                if self._shutdown_event.wait(timeout=delay):
                    return
            finally:
                self._healthy = False
                if conn is not None:
                    try:
                        conn.close()
                    except Exception:
                        logger.debug("Error closing LISTEN connection", exc_info=True)

    def start(self) -> None:
        thread = threading.Thread(target=self._run, daemon=True, name="pg-chat-listener")
        self._thread = thread
        thread.start()
        logger.info("PG chat listener thread started")

    def stop(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
            logger.info("PG chat listener thread stopped")
