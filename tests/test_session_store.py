"""Unit tests for the session store and login status state machine."""

from __future__ import annotations

import asyncio
import time

import pytest

from loginflow.auth.session_store import SessionStore
from loginflow.types import LoginStatus, TokenResponse


def _response(access_token: str = "at", **kwargs) -> TokenResponse:
    kwargs.setdefault("expires_on", time.time() + 3600)
    kwargs.setdefault("tenant_id", "tenant-1")
    kwargs.setdefault("user_id", "user@example.com")
    kwargs.setdefault("resource", "https://graph.example.com/")
    return TokenResponse(access_token=access_token, refresh_token="rt", expires_in=3600, **kwargs)


@pytest.fixture()
def store() -> SessionStore:
    """A fresh session store."""
    return SessionStore()


class TestStatus:
    """Tests for status transitions."""

    def test_starts_initializing(self, store) -> None:
        """A new store is initializing with no sessions."""
        assert store.status == LoginStatus.INITIALIZING
        assert store.sessions == []
        assert not store.ready.completed

    def test_fires_only_on_change(self, store) -> None:
        """Repeated updates with the same result notify once."""
        seen: list[LoginStatus] = []
        store.on_status_changed.subscribe(seen.append)

        store.update_status()
        store.update_status()
        store.begin_logging_in()
        store.begin_logging_in()

        assert seen == [LoginStatus.LOGGED_OUT, LoginStatus.LOGGING_IN]

    def test_logged_in_is_not_demoted(self, store, environment) -> None:
        """begin_logging_in() leaves LoggedIn alone."""
        store.update_sessions(environment, [_response()])
        assert store.status == LoginStatus.LOGGED_IN

        store.begin_logging_in()
        assert store.status == LoginStatus.LOGGED_IN

    def test_status_follows_sessions(self, store, environment) -> None:
        """LoggedIn exactly when sessions are present."""
        store.update_sessions(environment, [])
        assert store.status == LoginStatus.LOGGED_OUT

        store.update_sessions(environment, [_response()])
        assert store.status == LoginStatus.LOGGED_IN

        store.clear_sessions()
        assert store.status == LoginStatus.LOGGED_OUT


class TestSessions:
    """Tests for session set replacement."""

    def test_update_builds_sessions(self, store, environment) -> None:
        """Each token response becomes a session."""
        store.update_sessions(environment, [_response("a"), _response("b", user_id="other")])

        sessions = store.sessions
        assert [s.token.access_token for s in sessions] == ["a", "b"]
        assert sessions[0].environment is environment
        assert sessions[0].tenant_id == "tenant-1"
        assert sessions[1].user_id == "other"

    def test_sessions_returns_copy(self, store, environment) -> None:
        """Mutating the returned list does not touch the store."""
        store.update_sessions(environment, [_response()])
        store.sessions.clear()
        assert len(store.sessions) == 1

    def test_update_then_clear(self, store, environment) -> None:
        """Both mutations notify and the final state is logged out."""
        notifications: list[None] = []
        store.on_sessions_changed.subscribe(notifications.append)

        store.update_sessions(environment, [_response()])
        store.clear_sessions()

        assert store.sessions == []
        assert store.status == LoginStatus.LOGGED_OUT
        assert len(notifications) == 2
        assert len(store.token_cache) == 0

    def test_sessions_changed_fires_before_status(self, store, environment) -> None:
        """Listeners see the new sessions before the status changes."""
        order: list[str] = []
        store.on_sessions_changed.subscribe(lambda _: order.append("sessions"))
        store.on_status_changed.subscribe(lambda status: order.append(status.value))

        store.update_sessions(environment, [_response()])

        assert order == ["sessions", "LoggedIn"]

    def test_mutation_opens_ready_gate(self, store) -> None:
        """The first mutation completes the readiness signal."""
        store.clear_sessions()
        assert store.ready.completed


class TestFindTokens:
    """Tests for token cache lookups."""

    def test_waits_for_ready(self, store, environment) -> None:
        """Lookups block until the session set is first populated."""

        async def scenario() -> list[TokenResponse]:
            lookup = asyncio.ensure_future(store.find_tokens())
            await asyncio.sleep(0.01)
            assert not lookup.done()
            store.update_sessions(environment, [_response()])
            return await asyncio.wait_for(lookup, timeout=1)

        found = asyncio.run(scenario())
        assert [r.access_token for r in found] == ["at"]

    def test_filters(self, store, environment) -> None:
        """Every given criterion must match."""
        store.update_sessions(
            environment,
            [
                _response("a"),
                _response("b", tenant_id="tenant-2"),
                _response("c", resource="https://other/"),
            ],
        )

        async def scenario() -> tuple[list[str], list[str], list[str]]:
            by_tenant = await store.find_tokens(tenant_id="tenant-2")
            by_resource = await store.find_tokens(resource="https://graph.example.com/")
            by_user = await store.find_tokens(user_id="nobody")
            return (
                [r.access_token for r in by_tenant],
                [r.access_token for r in by_resource],
                [r.access_token for r in by_user],
            )

        assert asyncio.run(scenario()) == (["b"], ["a", "b"], [])

    def test_cache_entries_carry_authority(self, store, environment) -> None:
        """Entries record the tenant authority and client id."""
        store.update_sessions(environment, [_response()])

        entries = asyncio.run(store.token_cache.find())
        assert entries[0].authority == "https://login.example.com/tenant-1"
        assert entries[0].client_id == "test-client-id"


class TestWaitForLogin:
    """Tests for wait_for_login()."""

    def test_settled_statuses(self, store, environment) -> None:
        """Settled statuses answer immediately."""
        store.update_status()
        assert asyncio.run(store.wait_for_login()) is False

        store.update_sessions(environment, [_response()])
        assert asyncio.run(store.wait_for_login()) is True

    def test_waits_through_logging_in(self, store, environment) -> None:
        """Initializing and LoggingIn are waited out."""

        async def scenario() -> bool:
            waiter = asyncio.ensure_future(store.wait_for_login())
            await asyncio.sleep(0.01)
            store.begin_logging_in()
            await asyncio.sleep(0.01)
            assert not waiter.done()
            store.update_sessions(environment, [_response()])
            return await asyncio.wait_for(waiter, timeout=1)

        assert asyncio.run(scenario()) is True

    def test_listener_is_released(self, store) -> None:
        """The temporary status subscription is disposed afterwards."""

        async def scenario() -> bool:
            waiter = asyncio.ensure_future(store.wait_for_login())
            await asyncio.sleep(0.01)
            store.update_status()
            return await asyncio.wait_for(waiter, timeout=1)

        assert asyncio.run(scenario()) is False
        assert store.on_status_changed.listener_count == 0
