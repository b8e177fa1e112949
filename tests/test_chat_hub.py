"""
tests/test_chat_hub.py — Chat Fan-out Unit Tests
=================================================

Subscription ordering / de-duplication / gap reporting, hub registry
behaviour, NOTIFY emission, and the listener's dispatch and reconnect loop
(without a real PG connection).
"""

from __future__ import annotations

import json
import threading
from unittest.mock import MagicMock, patch

import pytest

from habitloop.engine.chat_hub import (
    CHAT_NOTIFY_CHANNEL,
    ChatHub,
    ChatListener,
    notify_before_commit,
)
from habitloop.engine.events import ChatEvent


def _event(seq: int, challenge_id: int = 1, message: str | None = None) -> ChatEvent:
    return ChatEvent(
        id=100 + seq,
        challenge_id=challenge_id,
        seq=seq,
        user_id="alice",
        message=message or f"message {seq}",
    )


class _Collector:
    def __init__(self) -> None:
        self.events: list[ChatEvent] = []

    def __call__(self, event: ChatEvent) -> None:
        self.events.append(event)

    @property
    def seqs(self) -> list[int]:
        return [e.seq for e in self.events]


class TestSubscription:
    def test_delivers_in_order(self, hub):
        got = _Collector()
        hub.subscribe(1, got, after_seq=0)
        for seq in (1, 2, 3):
            hub.publish(_event(seq))
        assert got.seqs == [1, 2, 3]

    def test_duplicates_are_dropped(self, hub):
        got = _Collector()
        hub.subscribe(1, got, after_seq=0)
        hub.publish(_event(1))
        hub.publish(_event(1))
        hub.publish(_event(2))
        hub.publish(_event(1))
        assert got.seqs == [1, 2]

    def test_out_of_order_events_wait_for_the_gap(self, hub):
        got = _Collector()
        hub.subscribe(1, got, after_seq=0)
        hub.publish(_event(3))
        hub.publish(_event(2))
        assert got.seqs == []
        hub.publish(_event(1))
        assert got.seqs == [1, 2, 3]

    def test_unprimed_subscription_buffers_until_primed(self, hub):
        got = _Collector()
        sub = hub.subscribe(1, got)
        hub.publish(_event(4))
        hub.publish(_event(5))
        hub.publish(_event(6))
        assert got.seqs == []

        sub.prime(4)  # history already showed 1..4

        assert got.seqs == [5, 6]
        assert sub.cursor == 6

    def test_prime_never_moves_backwards(self, hub):
        got = _Collector()
        sub = hub.subscribe(1, got, after_seq=5)
        sub.prime(2)
        hub.publish(_event(3))
        assert got.seqs == []
        assert sub.cursor == 5

    def test_other_challenges_are_not_delivered(self, hub):
        got = _Collector()
        hub.subscribe(1, got, after_seq=0)
        assert hub.publish(_event(1, challenge_id=2)) == 0
        assert got.events == []

    def test_every_subscriber_gets_every_message(self, hub):
        a, b = _Collector(), _Collector()
        hub.subscribe(1, a, after_seq=0)
        hub.subscribe(1, b, after_seq=0)
        assert hub.publish(_event(1)) == 2
        assert a.seqs == b.seqs == [1]

    def test_failing_callback_does_not_stop_delivery(self, hub):
        calls: list[int] = []

        def _boom(event: ChatEvent) -> None:
            calls.append(event.seq)
            raise RuntimeError("viewer went away")

        good = _Collector()
        hub.subscribe(1, _boom, after_seq=0)
        hub.subscribe(1, good, after_seq=0)
        hub.publish(_event(1))
        hub.publish(_event(2))

        assert calls == [1, 2]
        assert good.seqs == [1, 2]


class TestUnsubscribe:
    def test_no_delivery_after_unsubscribe(self, hub):
        got = _Collector()
        sub = hub.subscribe(1, got, after_seq=0)
        hub.publish(_event(1))
        sub.unsubscribe()
        hub.publish(_event(2))

        assert got.seqs == [1]
        assert not sub.active
        assert hub.subscriber_count(1) == 0

    def test_unsubscribe_is_idempotent(self, hub):
        sub = hub.subscribe(1, _Collector(), after_seq=0)
        sub.unsubscribe()
        sub.unsubscribe()
        assert hub.subscriber_count() == 0

    def test_context_manager_releases_handle(self, hub):
        with hub.subscribe(1, _Collector(), after_seq=0) as sub:
            assert hub.subscriber_count(1) == 1
        assert not sub.active
        assert hub.subscriber_count(1) == 0

    def test_unsubscribe_only_removes_own_handle(self, hub):
        keep = hub.subscribe(1, _Collector(), after_seq=0)
        drop = hub.subscribe(1, _Collector(), after_seq=0)
        hub.subscribe(2, _Collector(), after_seq=0)

        drop.unsubscribe()

        assert keep.active
        assert hub.subscriber_count(1) == 1
        assert hub.subscriber_count() == 2


class TestGapReporting:
    def test_gap_is_reported_once_with_the_cursor(self, hub):
        got = _Collector()
        gaps: list[int] = []
        hub.subscribe(1, got, after_seq=0, on_gap=lambda sub, cursor: gaps.append(cursor))

        hub.publish(_event(1))
        hub.publish(_event(3))
        hub.publish(_event(4))

        assert got.seqs == [1]
        assert gaps == [1]

    def test_offering_the_missing_event_releases_held_ones(self, hub):
        got = _Collector()

        def _backfill(sub, cursor):
            sub.offer(_event(cursor + 1))

        hub.subscribe(1, got, after_seq=0, on_gap=_backfill)
        hub.publish(_event(2))
        hub.publish(_event(3))

        assert got.seqs == [1, 2, 3]

    def test_released_report_is_repeated_on_next_arrival(self, hub):
        gaps: list[int] = []

        def _failing_backfill(sub, cursor):
            gaps.append(cursor)
            sub.release_gap_report()

        sub = hub.subscribe(1, _Collector(), after_seq=0, on_gap=_failing_backfill)
        hub.publish(_event(2))
        hub.publish(_event(3))

        assert gaps == [0, 0]
        assert sub.held == 2

    def test_prime_reports_gap_behind_buffered_events(self, hub):
        gaps: list[int] = []
        sub = hub.subscribe(1, _Collector(), on_gap=lambda s, cursor: gaps.append(cursor))
        hub.publish(_event(6))
        assert gaps == []

        sub.prime(4)

        assert gaps == [4]

    def test_gap_handler_error_does_not_break_delivery(self, hub):
        got = _Collector()

        def _boom(sub, cursor):
            raise RuntimeError("backfill scheduling failed")

        hub.subscribe(1, got, after_seq=0, on_gap=_boom)
        hub.publish(_event(2))
        hub.publish(_event(1))

        assert got.seqs == [1, 2]


class TestConcurrentPublish:
    def test_threads_publishing_out_of_order_still_deliver_in_seq_order(self, hub):
        got = _Collector()
        hub.subscribe(1, got, after_seq=0)
        events = [_event(seq) for seq in range(1, 41)]
        barrier = threading.Barrier(4)

        def _publish(chunk):
            barrier.wait()
            for event in reversed(chunk):
                hub.publish(event)

        threads = [
            threading.Thread(target=_publish, args=(events[i::4],)) for i in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert got.seqs == list(range(1, 41))


class TestNotifyBeforeCommit:
    def _session(self, dialect: str) -> MagicMock:
        session = MagicMock()
        session.get_bind.return_value.dialect.name = dialect
        return session

    def test_skipped_outside_postgres(self):
        session = self._session("sqlite")
        notify_before_commit(session, _event(1))
        session.execute.assert_not_called()

    def test_emits_pg_notify_with_row_reference(self):
        session = self._session("postgresql")
        notify_before_commit(session, _event(3, challenge_id=7))

        session.execute.assert_called_once()
        stmt, params = session.execute.call_args.args
        assert "pg_notify" in str(stmt)
        assert params["channel"] == CHAT_NOTIFY_CHANNEL
        assert json.loads(params["payload"]) == {"id": 103, "challenge_id": 7, "seq": 3}


class TestListenerDispatch:
    @pytest.fixture
    def loader(self):
        return MagicMock(return_value=_event(1))

    @pytest.fixture
    def listener(self, hub, loader):
        return ChatListener(MagicMock(), hub, loader)

    def test_valid_payload_is_loaded_and_published(self, hub, listener, loader):
        got = _Collector()
        hub.subscribe(1, got, after_seq=0)

        assert listener.dispatch(json.dumps({"id": 101, "challenge_id": 1, "seq": 1}))

        loader.assert_called_once()
        assert loader.call_args.args[1] == 101
        assert got.seqs == [1]

    @pytest.mark.parametrize("payload", ["not json", "{}", '{"id": "abc"}', "[]"])
    def test_invalid_payload_is_ignored(self, listener, loader, payload):
        assert listener.dispatch(payload) is False
        loader.assert_not_called()

    def test_deleted_row_is_ignored(self, hub, listener, loader):
        loader.return_value = None
        assert listener.dispatch('{"id": 5}') is False

    def test_notify_duplicate_of_local_publish_is_dropped(self, hub, listener):
        got = _Collector()
        hub.subscribe(1, got, after_seq=0)
        hub.publish(_event(1))
        listener.dispatch('{"id": 101}')
        assert got.seqs == [1]


class TestListenerHealth:
    def test_initial_state(self, hub):
        listener = ChatListener(MagicMock(), hub, MagicMock())
        assert listener.healthy is False
        assert listener.failed is False

    def test_stop_without_start_is_safe(self, hub):
        listener = ChatListener(MagicMock(), hub, MagicMock())
        listener.stop()


class TestListenerLoop:
    def test_gives_up_after_max_reconnect_attempts(self, hub):
        listener = ChatListener(
            MagicMock(), hub, MagicMock(), max_reconnect_attempts=3, base_backoff=0
        )
        with patch.object(listener, "_connect", side_effect=OSError("refused")) as connect:
            listener._run()

        assert connect.call_count == 3
        assert listener.failed is True
        assert listener.healthy is False

    def test_retry_delay_grows_and_is_capped(self, hub):
        listener = ChatListener(MagicMock(), hub, MagicMock(), base_backoff=1, max_backoff=8)
        with patch("habitloop.engine.chat_hub.random.uniform", return_value=0):
            delays = [listener._retry_delay(n) for n in range(1, 6)]
        assert delays == [1, 2, 4, 8, 8]

    def test_pump_dispatches_each_notification(self, hub):
        listener = ChatListener(MagicMock(), hub, MagicMock())
        conn = MagicMock()
        conn.notifies = []

        def _poll():
            conn.notifies.extend(
                [MagicMock(payload='{"id": 1}'), MagicMock(payload='{"id": 2}')]
            )

        conn.poll.side_effect = _poll
        calls = {"n": 0}

        def _select(rlist, wlist, xlist, timeout):
            calls["n"] += 1
            if calls["n"] > 1:
                listener._shutdown_event.set()
                return [], [], []
            return rlist, [], []

        with patch("habitloop.engine.chat_hub._select.select", side_effect=_select), \
                patch.object(listener, "dispatch") as dispatch:
            listener._pump(conn)

        assert [c.args[0] for c in dispatch.call_args_list] == ['{"id": 1}', '{"id": 2}']
        assert conn.notifies == []

    def test_pump_survives_a_failing_dispatch(self, hub):
        listener = ChatListener(MagicMock(), hub, MagicMock())
        conn = MagicMock()
        conn.notifies = []
        conn.poll.side_effect = lambda: conn.notifies.append(MagicMock(payload="{}"))

        def _select(rlist, wlist, xlist, timeout):
            if conn.poll.call_count:
                listener._shutdown_event.set()
                return [], [], []
            return rlist, [], []

        with patch("habitloop.engine.chat_hub._select.select", side_effect=_select), \
                patch.object(listener, "dispatch", side_effect=RuntimeError("bad row")):
            listener._pump(conn)

        assert conn.notifies == []

    def test_dsn_uses_plain_postgres_driver(self, hub):
        from sqlalchemy import make_url

        engine = MagicMock()
        engine.url = make_url("postgresql+psycopg2://app:secret@db:5432/habitloop")
        listener = ChatListener(engine, hub, MagicMock())

        assert listener._dsn() == "postgresql://app:secret@db:5432/habitloop"
