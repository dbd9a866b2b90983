"""Publish/subscribe and one-shot signalling primitives.

``EventEmitter`` delivers events synchronously, in subscription order,
to the listeners subscribed at the time of ``fire``. ``Signal`` is a
single-resolution gate that can be completed from any thread and awaited
from any event loop. ``CancellationTokenSource`` builds cooperative
cancellation on top of both.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import threading

from collections.abc import Callable
from typing import Generic, TypeVar


logger = logging.getLogger("loginflow.events")

T = TypeVar("T")


class Subscription:
    """Handle returned by ``EventEmitter.subscribe``."""

    def __init__(self, dispose: Callable[[], None]) -> None:
        """Initialize the subscription."""
        self._dispose = dispose
        self._disposed = False

    def dispose(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if not self._disposed:
            self._disposed = True
            self._dispose()


class EventEmitter(Generic[T]):
    """Ordered, synchronous event channel.

    Listener exceptions are logged and do not stop delivery to the
    remaining listeners.
    """

    def __init__(self) -> None:
        """Initialize the emitter."""
        self._listeners: list[Callable[[T], object]] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Callable[[T], object]) -> Subscription:
        """Register ``listener`` and return its subscription.

        Parameters
        ----------
        listener : callable
            Invoked with the fired value.

        Returns
        -------
        Subscription
            Dispose it to unsubscribe.
        """
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return Subscription(_remove)

    def fire(self, value: T) -> None:
        """Deliver ``value`` to every current listener."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(value)
            except Exception:
                logger.exception("Event listener %r failed", listener)

    @property
    def listener_count(self) -> int:
        """Number of subscribed listeners."""
        with self._lock:
            return len(self._listeners)

    def dispose(self) -> None:
        """Drop all listeners."""
        with self._lock:
            self._listeners.clear()


class Signal:
    """Single-resolution readiness gate.

    ``complete`` may be called from any thread, any number of times;
    only the first call has an effect. Awaiting ``wait`` returns once
    the signal is complete.
    """

    def __init__(self) -> None:
        """Initialize an incomplete signal."""
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []

    @property
    def completed(self) -> bool:
        """Whether the signal has been completed."""
        return self._event.is_set()

    def complete(self) -> None:
        """Complete the signal and release every waiter."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            waiters, self._waiters = self._waiters, []
        for loop, future in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve_future, future)

    async def wait(self) -> None:
        """Wait until the signal is completed."""
        if self._event.is_set():
            return
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        with self._lock:
            if self._event.is_set():
                return
            self._waiters.append((loop, future))
        await future


def _resolve_future(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


class CancellationToken:
    """Read side of a ``CancellationTokenSource``."""

    def __init__(self, signal: Signal, requested: EventEmitter[None]) -> None:
        """Initialize the token."""
        self._signal = signal
        self._requested = requested

    @property
    def is_cancellation_requested(self) -> bool:
        """Whether cancellation has been requested."""
        return self._signal.completed

    def on_cancellation_requested(self, listener: Callable[[None], object]) -> Subscription:
        """Subscribe to the cancellation request."""
        return self._requested.subscribe(listener)

    async def wait(self) -> None:
        """Wait until cancellation is requested."""
        await self._signal.wait()

    @classmethod
    def none(cls) -> CancellationToken:
        """A token that is never cancelled."""
        return CancellationTokenSource().token


class CancellationTokenSource:
    """Owner of a cancellation token.

    The owner cancels the token when the operation it guards should
    stop, then disposes the source to drop listeners.
    """

    def __init__(self) -> None:
        """Initialize the source."""
        self._signal = Signal()
        self._requested: EventEmitter[None] = EventEmitter()
        self.token = CancellationToken(self._signal, self._requested)

    def cancel(self) -> None:
        """Request cancellation. Only the first call notifies listeners."""
        if self._signal.completed:
            return
        self._signal.complete()
        self._requested.fire(None)

    def dispose(self) -> None:
        """Release listeners."""
        self._requested.dispose()
