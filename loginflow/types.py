"""Type definitions for loginflow.

Shared types used across the listener, token exchange, and session store.
"""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class IdentityEnvironment:
    """Endpoint set of one identity-provider deployment.

    Attributes
    ----------
    name : str
        Display and storage name of the environment.
    active_directory_endpoint_url : str
        Authority base URL, with trailing slash. The tenant is appended
        to it to form the authorize and token endpoints.
    active_directory_resource_id : str
        Resource identifier tokens are requested for.
    management_endpoint_url : str
        Base URL of the management API served by this environment.
    oauth_app_id : str
        Application (client) identifier registered with the provider.
    """

    name: str
    active_directory_endpoint_url: str
    active_directory_resource_id: str
    management_endpoint_url: str
    oauth_app_id: str

    def authority(self, tenant_id: str) -> str:
        """Authority URL for ``tenant_id``."""
        return f"{self.active_directory_endpoint_url}{tenant_id}"


DEFAULT_ENVIRONMENT = IdentityEnvironment(
    name="VSSaaS",
    active_directory_endpoint_url="https://login.microsoftonline.com/",
    active_directory_resource_id="https://graph.microsoft.com/",
    management_endpoint_url="https://graph.microsoft.com/",
    oauth_app_id="cdcf391a-4df6-473f-9bea-2c616df8c925",
)

COMMON_TENANT_ID = "common"

DEFAULT_SCOPE = "openid offline_access https://graph.microsoft.com/user.read"


class LoginStatus(str, Enum):
    """Public login status."""

    INITIALIZING = "Initializing"
    LOGGING_IN = "LoggingIn"
    LOGGED_IN = "LoggedIn"
    LOGGED_OUT = "LoggedOut"


@dataclass
class TokenResponse:
    """Result of one token exchange.

    Attributes
    ----------
    access_token : str
        The access token (may be empty; callers decide what that means).
    refresh_token : str or None
        Refresh token, when the provider issued one.
    expires_in : int
        Token lifetime in seconds.
    expires_on : float
        Absolute expiry as a unix timestamp.
    token_type : str
        Token type, typically "Bearer".
    resource : str or None
        Resource the token was issued for.
    user_id : str or None
        User identifier taken from the ID token claims.
    tenant_id : str or None
        Tenant identifier taken from the ID token claims.
    raw : dict[str, Any]
        The raw token response from the provider.
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int = 0
    expires_on: float = field(default_factory=time.time)
    token_type: str = "Bearer"  # noqa: S105
    resource: str | None = None
    user_id: str | None = None
    tenant_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        return time.time() >= self.expires_on


@dataclass(frozen=True)
class Token:
    """Token material handed to callers of ``login`` and ``get_token``."""

    access_token: str
    refresh_token: str | None
    expires_in: int
    expires_on: float

    @classmethod
    def from_response(cls, response: TokenResponse) -> Token:
        """Build a Token from a token exchange result."""
        return cls(
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            expires_in=response.expires_in,
            expires_on=response.expires_on,
        )


@dataclass(frozen=True)
class Session:
    """One authenticated identity and its current token material."""

    environment: IdentityEnvironment
    user_id: str | None
    tenant_id: str | None
    token: Token
