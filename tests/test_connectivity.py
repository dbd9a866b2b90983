"""Unit tests for connectivity gating and race helpers."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from loginflow.auth.connectivity import become_online, delay, either, is_online, race
from loginflow.events import CancellationTokenSource


class _Probe:
    """Scripted connectivity probe that counts its calls."""

    def __init__(self, *answers: bool, latency: float = 0.0) -> None:
        self.answers = list(answers)
        self.latency = latency
        self.calls = 0

    async def __call__(self, _environment) -> bool:
        self.calls += 1
        answer = self.answers.pop(0) if self.answers else False
        await asyncio.sleep(self.latency)
        return answer


# ── Helpers ─────────────────────────────────────────────────────────


class TestRace:
    """Tests for race()."""

    def test_first_to_finish_wins(self) -> None:
        """The faster awaitable's result is returned."""

        async def scenario() -> object:
            slow = asyncio.ensure_future(delay(1.0, "slow"))
            try:
                return await race(slow, delay(0.01, "fast"))
            finally:
                slow.cancel()

        assert asyncio.run(scenario()) == "fast"

    def test_losers_keep_running(self) -> None:
        """race() does not cancel the losing task."""

        async def scenario() -> str | None:
            loser = asyncio.ensure_future(delay(0.05, "late"))
            await race(delay(0.0, "early"), loser)
            assert not loser.cancelled()
            return await loser

        assert asyncio.run(scenario()) == "late"


class TestEither:
    """Tests for either()."""

    def test_first_truthy_result(self) -> None:
        """A truthy result wins even if the other finishes first falsy."""

        async def scenario() -> object:
            return await either(delay(0.0, False), delay(0.02, True))

        assert asyncio.run(scenario()) is True

    def test_fast_truthy_short_circuits(self) -> None:
        """A fast truthy result does not wait for the other."""

        async def scenario() -> tuple[object, bool]:
            slow = asyncio.ensure_future(delay(5.0, True))
            result = await asyncio.wait_for(either(delay(0.0, "yes"), slow), timeout=1.0)
            await asyncio.sleep(0.01)
            return result, slow.cancelled()

        assert asyncio.run(scenario()) == ("yes", True)

    def test_both_falsy(self) -> None:
        """When both are falsy the last result is returned."""

        async def scenario() -> object:
            return await either(delay(0.0, False), delay(0.01, None))

        assert asyncio.run(scenario()) is None

    def test_cancel_cancels_children(self) -> None:
        """Cancelling either() cancels both awaitables."""

        async def scenario() -> tuple[bool, bool]:
            a = asyncio.ensure_future(delay(5.0, True))
            b = asyncio.ensure_future(delay(5.0, True))
            task = asyncio.ensure_future(either(a, b))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            await asyncio.sleep(0.01)
            return a.cancelled(), b.cancelled()

        assert asyncio.run(scenario()) == (True, True)


# ── is_online ───────────────────────────────────────────────────────


class TestIsOnline:
    """Tests for the HTTP connectivity probe."""

    def test_any_response_is_online(self, environment) -> None:
        """Even an error status counts as reachable."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(404)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        assert asyncio.run(is_online(environment, client=client)) is True
        assert seen == ["https://login.example.com/"]

    def test_connection_error_is_offline(self, environment) -> None:
        """Transport errors count as offline."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        assert asyncio.run(is_online(environment, client=client)) is False


# ── become_online ───────────────────────────────────────────────────


class TestBecomeOnline:
    """Tests for become_online()."""

    def test_returns_when_online(self, environment) -> None:
        """A successful first probe returns immediately."""
        probe = _Probe(True)
        asyncio.run(asyncio.wait_for(become_online(environment, 0.05, probe=probe), timeout=2))
        assert probe.calls == 1

    def test_polls_until_online(self, environment) -> None:
        """Failed probes are retried every interval."""
        probe = _Probe(False, False, True)
        asyncio.run(asyncio.wait_for(become_online(environment, 0.02, probe=probe), timeout=2))
        assert probe.calls == 3

    def test_slow_probe_is_merged_with_fresh_one(self, environment) -> None:
        """A probe slower than the interval still counts when it answers."""
        probe = _Probe(True, False, False, latency=0.1)
        asyncio.run(asyncio.wait_for(become_online(environment, 0.03, probe=probe), timeout=2))
        assert probe.calls >= 2

    def test_already_cancelled_token_skips_probing(self, environment) -> None:
        """A cancelled token returns without probing."""
        source = CancellationTokenSource()
        source.cancel()
        probe = _Probe(False)
        asyncio.run(become_online(environment, 0.01, source.token, probe=probe))
        assert probe.calls == 0

    def test_cancel_immediately_stops_polling(self, environment) -> None:
        """Cancelling before the first probe answers returns without more probes."""

        async def scenario() -> int:
            source = CancellationTokenSource()
            probe = _Probe(False, latency=1.0)
            task = asyncio.ensure_future(become_online(environment, 0.01, source.token, probe=probe))
            await asyncio.sleep(0)
            source.cancel()
            await asyncio.wait_for(task, timeout=1.0)
            calls = probe.calls
            await asyncio.sleep(0.05)
            assert probe.calls == calls
            return calls

        assert asyncio.run(scenario()) <= 1

    def test_cancel_while_offline(self, environment) -> None:
        """Cancelling mid-wait returns promptly and quietly."""

        async def scenario() -> None:
            source = CancellationTokenSource()
            probe = _Probe()
            task = asyncio.ensure_future(become_online(environment, 0.02, source.token, probe=probe))
            await asyncio.sleep(0.1)
            source.cancel()
            await asyncio.wait_for(task, timeout=1.0)
            assert probe.calls >= 2

        asyncio.run(scenario())
