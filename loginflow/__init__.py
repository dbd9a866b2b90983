"""loginflow - interactive OAuth2 sign-in with a renewable session.

Runs the authorization code flow through a loopback redirect listener,
keeps the session alive with refresh tokens, and persists them in the
OS keyring between runs.
"""

from __future__ import annotations

from .auth import LoginOrchestrator
from .config import LoginFlowSettings, get_settings
from .exceptions import (
    AuthenticationError,
    CallbackError,
    CodeTimeout,
    LoginFailed,
    LoginFlowException,
    NotSignedIn,
    Offline,
    PortTimeout,
    RefreshFailed,
    TokenExchangeFailed,
)
from .types import (
    COMMON_TENANT_ID,
    DEFAULT_ENVIRONMENT,
    IdentityEnvironment,
    LoginStatus,
    Session,
    Token,
    TokenResponse,
)


__version__ = "0.1.0"

__all__ = [
    "COMMON_TENANT_ID",
    "DEFAULT_ENVIRONMENT",
    "AuthenticationError",
    "CallbackError",
    "CodeTimeout",
    "IdentityEnvironment",
    "LoginFailed",
    "LoginFlowException",
    "LoginFlowSettings",
    "LoginOrchestrator",
    "LoginStatus",
    "NotSignedIn",
    "Offline",
    "PortTimeout",
    "RefreshFailed",
    "Session",
    "Token",
    "TokenExchangeFailed",
    "TokenResponse",
    "__version__",
    "get_settings",
]
