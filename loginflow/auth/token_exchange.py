"""Token endpoint exchanges.

Implements the two token-acquisition protocols used by the login flow
against the provider's ``/oauth2/token`` endpoint: authorization code for
tokens, and refresh token for tokens. Both are single form-encoded POSTs
with no automatic retry.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import base64
import binascii
import json
import logging
import time

from typing import TYPE_CHECKING, Any

import httpx

from ..exceptions import RefreshFailed, TokenExchangeFailed
from ..log import redact_sensitive_data
from ..types import DEFAULT_SCOPE, TokenResponse


if TYPE_CHECKING:
    from ..types import IdentityEnvironment


logger = logging.getLogger("loginflow.auth")

_DEFAULT_EXPIRES_IN = 3600


def token_endpoint(environment: IdentityEnvironment, tenant_id: str) -> str:
    """Token endpoint URL for ``tenant_id`` in ``environment``."""
    return f"{environment.authority(tenant_id)}/oauth2/token"


def parse_token_response(
    data: dict[str, Any],
    tenant_id: str | None = None,
    now: float | None = None,
) -> TokenResponse:
    """Build a TokenResponse from a token endpoint JSON body.

    Parameters
    ----------
    data : dict
        The decoded response body.
    tenant_id : str, optional
        Tenant the request was made against, used when the ID token
        carries no ``tid`` claim.
    now : float, optional
        Issue time used to compute the absolute expiry (default: now).

    Returns
    -------
    TokenResponse
        The parsed token set.
    """
    issued_at = time.time() if now is None else now
    try:
        expires_in = int(float(data.get("expires_in", _DEFAULT_EXPIRES_IN)))
    except (TypeError, ValueError):
        expires_in = _DEFAULT_EXPIRES_IN

    claims = decode_id_token_claims(data.get("id_token"))
    user_id = (
        claims.get("upn")
        or claims.get("unique_name")
        or claims.get("email")
        or claims.get("preferred_username")
        or claims.get("oid")
    )

    return TokenResponse(
        access_token=data.get("access_token") or "",
        refresh_token=data.get("refresh_token") or None,
        expires_in=expires_in,
        expires_on=issued_at + expires_in,
        token_type=data.get("token_type", "Bearer"),
        resource=data.get("resource"),
        user_id=user_id,
        tenant_id=claims.get("tid") or tenant_id,
        raw=data,
    )


def decode_id_token_claims(id_token: str | None) -> dict[str, Any]:
    """Read the claims of an ID token without verifying its signature.

    The claims only label the session (user and tenant); nothing is
    authorized based on them.
    """
    if not id_token:
        return {}
    parts = id_token.split(".")
    if len(parts) < 2:
        return {}
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError):
        logger.debug("Ignoring undecodable id_token")
        return {}
    return claims if isinstance(claims, dict) else {}


def _read_json(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body, or return an empty dict."""
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _describe_error(payload: dict[str, Any]) -> str:
    error = payload.get("error", "")
    description = payload.get("error_description")
    return f"{error}: {description}" if description else str(error)


class TokenExchanger:
    """Client for the provider's token endpoint.

    Parameters
    ----------
    client : httpx.AsyncClient, optional
        HTTP client to use. When omitted, one is created lazily and
        closed by ``aclose``.
    timeout : float
        Request timeout in seconds (default ``30``).
    scope : str
        Scope sent with the authorization code exchange.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        scope: str = DEFAULT_SCOPE,
    ) -> None:
        """Initialize the token exchanger."""
        self.timeout = timeout
        self.scope = scope
        self._http_client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this exchanger created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _post(self, url: str, data: dict[str, str]) -> httpx.Response:
        client = await self._get_client()
        logger.debug("POST %s %s", url, redact_sensitive_data(data))
        return await client.post(
            url,
            data=data,
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )

    async def exchange_code(
        self,
        client_id: str,
        environment: IdentityEnvironment,
        redirect_uri: str,
        tenant_id: str,
        code: str,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        client_id : str
            The application (client) identifier.
        environment : IdentityEnvironment
            The identity-provider environment.
        redirect_uri : str
            The redirect URI used in the authorize request.
        tenant_id : str
            Tenant to authenticate against.
        code : str
            The authorization code from the callback.

        Returns
        -------
        TokenResponse
            The issued token set.

        Raises
        ------
        TokenExchangeFailed
            On transport errors, non-success responses, or an ``error``
            field in the response body.
        """
        data = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "scope": self.scope,
            "redirect_uri": redirect_uri,
            "code": code,
            "resource": environment.active_directory_resource_id,
        }
        try:
            response = await self._post(token_endpoint(environment, tenant_id), data)
        except httpx.HTTPError as exc:
            msg = f"Token exchange failed: {exc}"
            raise TokenExchangeFailed(msg, reason=exc, environment=environment.name) from exc

        payload = _read_json(response)
        if not response.is_success or payload.get("error"):
            detail = _describe_error(payload) if payload.get("error") else response.text
            msg = f"Token exchange failed with status {response.status_code}: {detail}"
            raise TokenExchangeFailed(
                msg,
                status_code=response.status_code,
                reason=payload or None,
                environment=environment.name,
            )

        logger.debug("Authorization code exchanged for %s", environment.name)
        return parse_token_response(payload, tenant_id)

    async def exchange_refresh_token(
        self,
        environment: IdentityEnvironment,
        refresh_token: str,
        tenant_id: str,
        resource: str | None = None,
    ) -> TokenResponse:
        """Exchange a refresh token for a new token set.

        Parameters
        ----------
        environment : IdentityEnvironment
            The identity-provider environment.
        refresh_token : str
            The refresh token.
        tenant_id : str
            Tenant to authenticate against.
        resource : str, optional
            Resource to scope the new access token to. Omitted from the
            request when not given.

        Returns
        -------
        TokenResponse
            The new token set. An empty ``access_token`` is returned
            as-is.

        Raises
        ------
        RefreshFailed
            If the provider answers with an ``error`` field.
        TokenExchangeFailed
            On transport errors or a non-success response without an
            ``error`` field.
        """
        data = {
            "grant_type": "refresh_token",
            "client_id": environment.oauth_app_id,
            "refresh_token": refresh_token,
        }
        if resource:
            data["resource"] = resource

        try:
            response = await self._post(token_endpoint(environment, tenant_id), data)
        except httpx.HTTPError as exc:
            msg = f"Token refresh request failed: {exc}"
            raise TokenExchangeFailed(msg, reason=exc, environment=environment.name) from exc

        payload = _read_json(response)
        if payload.get("error"):
            msg = "Acquiring token with refresh token failed"
            raise RefreshFailed(
                f"{msg}: {_describe_error(payload)}",
                reason=payload,
                environment=environment.name,
            )
        if not response.is_success:
            msg = f"Token refresh failed with status {response.status_code}: {response.text}"
            raise TokenExchangeFailed(
                msg, status_code=response.status_code, environment=environment.name
            )

        logger.debug("Refresh token exchanged for %s", environment.name)
        return parse_token_response(payload, tenant_id)
