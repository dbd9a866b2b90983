"""Tests for event emitters, signals and cancellation tokens."""

from __future__ import annotations

import asyncio
import threading

from loginflow.events import CancellationToken, CancellationTokenSource, EventEmitter, Signal


class TestEventEmitter:
    """Tests for EventEmitter."""

    def test_delivers_in_subscription_order(self) -> None:
        """Listeners run in the order they subscribed."""
        emitter: EventEmitter[int] = EventEmitter()
        seen: list[str] = []
        emitter.subscribe(lambda v: seen.append(f"a{v}"))
        emitter.subscribe(lambda v: seen.append(f"b{v}"))

        emitter.fire(1)
        assert seen == ["a1", "b1"]

    def test_dispose_unsubscribes(self) -> None:
        """A disposed subscription stops receiving events."""
        emitter: EventEmitter[int] = EventEmitter()
        seen: list[int] = []
        subscription = emitter.subscribe(seen.append)

        subscription.dispose()
        subscription.dispose()
        emitter.fire(1)

        assert seen == []
        assert emitter.listener_count == 0

    def test_listener_errors_do_not_stop_delivery(self, caplog) -> None:
        """A failing listener is logged and the rest still run."""
        emitter: EventEmitter[int] = EventEmitter()
        seen: list[int] = []

        def broken(_value: int) -> None:
            raise RuntimeError("boom")

        emitter.subscribe(broken)
        emitter.subscribe(seen.append)

        with caplog.at_level("ERROR", logger="loginflow.events"):
            emitter.fire(7)

        assert seen == [7]
        assert "failed" in caplog.text

    def test_subscribing_during_fire(self) -> None:
        """Listeners added while firing wait for the next event."""
        emitter: EventEmitter[int] = EventEmitter()
        late: list[int] = []

        def add_late(_value: int) -> None:
            emitter.subscribe(late.append)

        emitter.subscribe(add_late)
        emitter.fire(1)
        assert late == []

        emitter.fire(2)
        assert late == [2]


class TestSignal:
    """Tests for Signal."""

    def test_completed_signal_does_not_block(self) -> None:
        """wait() on a completed signal returns at once."""
        signal = Signal()
        signal.complete()
        signal.complete()
        asyncio.run(asyncio.wait_for(signal.wait(), timeout=1))
        assert signal.completed

    def test_complete_from_another_thread(self) -> None:
        """A waiter on the loop is released by a thread."""
        signal = Signal()

        async def scenario() -> None:
            waiter = asyncio.ensure_future(signal.wait())
            await asyncio.sleep(0.01)
            assert not waiter.done()
            threading.Thread(target=signal.complete).start()
            await asyncio.wait_for(waiter, timeout=1)

        asyncio.run(scenario())


class TestCancellation:
    """Tests for CancellationTokenSource."""

    def test_cancel_notifies_once(self) -> None:
        """Listeners hear the first cancel only."""
        source = CancellationTokenSource()
        heard: list[None] = []
        source.token.on_cancellation_requested(heard.append)

        source.cancel()
        source.cancel()

        assert source.token.is_cancellation_requested
        assert heard == [None]

    def test_wait_returns_after_cancel(self) -> None:
        """token.wait() returns once cancelled."""
        source = CancellationTokenSource()

        async def scenario() -> None:
            waiter = asyncio.ensure_future(source.token.wait())
            await asyncio.sleep(0.01)
            source.cancel()
            await asyncio.wait_for(waiter, timeout=1)

        asyncio.run(scenario())

    def test_dispose_drops_listeners(self) -> None:
        """A disposed source no longer notifies."""
        source = CancellationTokenSource()
        heard: list[None] = []
        source.token.on_cancellation_requested(heard.append)

        source.dispose()
        source.cancel()

        assert heard == []
        assert source.token.is_cancellation_requested

    def test_none_token(self) -> None:
        """CancellationToken.none() is never cancelled."""
        assert not CancellationToken.none().is_cancellation_requested
