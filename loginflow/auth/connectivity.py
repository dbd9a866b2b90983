"""Connectivity gating for interactive login.

``become_online`` polls the identity provider until it answers, the
caller cancels, or forever. Probes are never abandoned mid-flight: when
the poll timer fires first, the still-pending probe is merged with a
fresh one through ``either`` so that whichever answers first wins.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from ..events import CancellationToken


if TYPE_CHECKING:
    from ..types import IdentityEnvironment


logger = logging.getLogger("loginflow.auth")

T = TypeVar("T")

Probe = Callable[["IdentityEnvironment"], Awaitable[bool]]


async def delay(seconds: float, result: T | None = None) -> T | None:
    """Sleep for ``seconds`` and return ``result``."""
    await asyncio.sleep(seconds)
    return result


async def race(*aws: Awaitable[Any]) -> Any:
    """Return the result of whichever awaitable completes first.

    Ties resolve in argument order. The losers are left running; pass
    tasks when the caller needs to cancel them afterwards.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for task in tasks:
        if task in done:
            return task.result()
    raise RuntimeError("race() finished without a completed awaitable")


async def either(a: Awaitable[T], b: Awaitable[T]) -> T:
    """Return the first truthy result of ``a`` or ``b``.

    When the first to finish is falsy, the other one is awaited and its
    result returned as-is. Cancelling ``either`` cancels both.
    """
    tasks = [asyncio.ensure_future(a), asyncio.ensure_future(b)]
    pending = set(tasks)
    result: Any = None
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in tasks:
                if task in done:
                    result = task.result()
                    if result:
                        return result
        return result
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


async def is_online(
    environment: IdentityEnvironment,
    client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> bool:
    """Probe the environment's authority endpoint.

    Parameters
    ----------
    environment : IdentityEnvironment
        The environment to probe.
    client : httpx.AsyncClient, optional
        Client to send the probe with. A short-lived one is used when
        omitted.
    timeout : float
        Probe timeout in seconds.

    Returns
    -------
    bool
        True when any HTTP response is received, False on transport
        errors.
    """
    url = environment.active_directory_endpoint_url
    try:
        if client is not None:
            await client.get(url, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as probe_client:
                await probe_client.get(url)
    except httpx.HTTPError as exc:
        logger.debug("Connectivity probe to %s failed: %s", url, exc)
        return False
    return True


async def become_online(
    environment: IdentityEnvironment,
    interval: float,
    token: CancellationToken | None = None,
    probe: Probe = is_online,
) -> None:
    """Wait until ``environment`` is reachable or ``token`` is cancelled.

    Parameters
    ----------
    environment : IdentityEnvironment
        The environment to probe.
    interval : float
        Poll interval in seconds. A new probe is issued each interval
        while the previous ones are still unanswered.
    token : CancellationToken, optional
        Stops the wait when cancelled. Cancellation is not an error;
        the coroutine simply returns.
    probe : callable
        Connectivity probe (default ``is_online``).
    """
    token = token or CancellationToken.none()
    if token.is_cancellation_requested:
        return

    online: asyncio.Future[Any] = asyncio.ensure_future(probe(environment))
    timer: asyncio.Future[Any] = asyncio.ensure_future(delay(interval, False))
    cancelled = asyncio.ensure_future(token.wait())
    try:
        while True:
            await asyncio.wait({online, timer, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            if token.is_cancellation_requested:
                return
            if online.done() and online.result():
                return
            await asyncio.wait({timer, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            if token.is_cancellation_requested:
                return
            logger.debug("Still offline, probing %s again", environment.name)
            online = asyncio.ensure_future(either(online, probe(environment)))
            timer = asyncio.ensure_future(delay(interval, False))
    finally:
        for task in (online, timer, cancelled):
            task.cancel()
