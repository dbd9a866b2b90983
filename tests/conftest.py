"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import base64
import json
import os

from typing import TYPE_CHECKING, Any

import httpx
import pytest

from loginflow.auth.secret_store import MemorySecretStore, reset_secret_store
from loginflow.auth.token_exchange import TokenExchanger
from loginflow.config import LoginFlowSettings, clear_settings
from loginflow.types import IdentityEnvironment


if TYPE_CHECKING:
    from collections.abc import Callable, Generator


@pytest.fixture(autouse=True)
def isolate_config(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep LOGINFLOW_* variables and cached singletons out of every test."""
    for key in list(os.environ):
        if key.startswith("LOGINFLOW_"):
            monkeypatch.delenv(key)
    clear_settings()
    reset_secret_store()
    yield
    clear_settings()
    reset_secret_store()


@pytest.fixture()
def environment() -> IdentityEnvironment:
    """A test identity-provider environment."""
    return IdentityEnvironment(
        name="Test",
        active_directory_endpoint_url="https://login.example.com/",
        active_directory_resource_id="https://graph.example.com/",
        management_endpoint_url="https://management.example.com/",
        oauth_app_id="test-client-id",
    )


@pytest.fixture()
def settings() -> LoginFlowSettings:
    """Settings with short timeouts and an in-memory secret store."""
    return LoginFlowSettings(
        environment={"tenant": "test-tenant"},
        secrets={"backend": "memory"},
        timeout={
            "port": 5.0,
            "code": 10.0,
            "callback_response": 5.0,
            "close_grace": 0.0,
            "offline_prompt": 0.2,
            "online_poll": 0.05,
            "refresh_online_wait": 0.05,
        },
    )


@pytest.fixture()
def secret_store() -> MemorySecretStore:
    """A fresh in-memory secret store."""
    return MemorySecretStore()


@pytest.fixture()
def make_exchanger() -> Callable[[Callable[[httpx.Request], httpx.Response]], TokenExchanger]:
    """Build a TokenExchanger whose requests go to ``handler``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> TokenExchanger:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return TokenExchanger(client=client)

    return _make


def make_id_token(claims: dict[str, Any]) -> str:
    """An unsigned JWT carrying ``claims``."""

    def _segment(data: dict[str, Any]) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{_segment(claims)}.sig"


@pytest.fixture()
def id_token() -> Callable[[dict[str, Any]], str]:
    """Factory for unsigned ID tokens."""
    return make_id_token
