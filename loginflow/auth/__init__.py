"""Authorization-code login for loginflow.

Provides the loopback redirect listener, token endpoint client,
connectivity gate, session store, secret storage, and the orchestrator
that sequences them.
"""

from __future__ import annotations

from .code_flow import build_authorize_url, login, open_in_browser
from .connectivity import become_online, delay, either, is_online, race
from .nonce import generate_nonce
from .orchestrator import LoginOrchestrator
from .redirect_listener import CallbackResponse, CodeResult, RedirectListener, parse_callback
from .secret_store import (
    KeyringSecretStore,
    MemorySecretStore,
    SecretStore,
    get_secret_store,
    reset_secret_store,
)
from .session_store import SessionStore, TokenCache
from .token_exchange import TokenExchanger


__all__ = [
    "CallbackResponse",
    "CodeResult",
    "KeyringSecretStore",
    "LoginOrchestrator",
    "MemorySecretStore",
    "RedirectListener",
    "SecretStore",
    "SessionStore",
    "TokenCache",
    "TokenExchanger",
    "become_online",
    "build_authorize_url",
    "delay",
    "either",
    "generate_nonce",
    "get_secret_store",
    "is_online",
    "login",
    "open_in_browser",
    "parse_callback",
    "race",
    "reset_secret_store",
]
