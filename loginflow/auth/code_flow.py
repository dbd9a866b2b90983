"""Interactive authorization-code login.

One call to ``login`` runs a complete attempt: start a redirect
listener, send the user's browser to the provider's authorize endpoint,
wait for the callback, exchange the code, and answer the browser with
a landing page that reports the result.
"""

# pylint: disable=logging-too-many-args,too-many-arguments,too-many-locals

from __future__ import annotations

import asyncio
import logging
import secrets
import threading
import webbrowser

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING
from urllib.parse import quote

from ..exceptions import CodeTimeout, LoginFailed
from ..types import DEFAULT_SCOPE
from .nonce import generate_nonce
from .redirect_listener import RedirectListener


if TYPE_CHECKING:
    from ..types import IdentityEnvironment, TokenResponse
    from .token_exchange import TokenExchanger


logger = logging.getLogger("loginflow.auth")

OpenUri = Callable[[str], Awaitable[None]]


def build_authorize_url(
    environment: IdentityEnvironment,
    tenant_id: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    scope: str = DEFAULT_SCOPE,
) -> str:
    """Build the provider's authorize URL.

    Parameters
    ----------
    environment : IdentityEnvironment
        The identity-provider environment.
    tenant_id : str
        Tenant to sign in to.
    client_id : str
        The application (client) identifier.
    redirect_uri : str
        Where the provider sends the browser back to.
    state : str
        The ``state`` value. Embedded as-is: it is built from an
        already URL-encoded nonce.
    scope : str
        Space-separated scopes.

    Returns
    -------
    str
        The full authorize URL.
    """
    query = "&".join(
        [
            "response_type=code",
            "response_mode=query",
            f"client_id={quote(client_id, safe='')}",
            f"scope={quote(scope, safe='')}",
            f"redirect_uri={quote(redirect_uri, safe='')}",
            f"state={state}",
            f"resource={quote(environment.active_directory_resource_id, safe='')}",
            "prompt=select_account",
        ]
    )
    return f"{environment.authority(tenant_id)}/oauth2/authorize?{query}"


async def open_in_browser(uri: str) -> None:
    """Hand ``uri`` to the system browser without blocking the event loop."""
    thread = threading.Thread(
        target=webbrowser.open, args=(uri,), name="loginflow-browser", daemon=True
    )
    thread.start()


def _error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message or "Unknown error"


async def login(
    client_id: str,
    environment: IdentityEnvironment,
    tenant_id: str,
    open_uri: OpenUri,
    *,
    exchanger: TokenExchanger,
    scope: str = DEFAULT_SCOPE,
    port_timeout: float = 5.0,
    code_timeout: float = 300.0,
    response_timeout: float = 60.0,
    close_grace: float = 5.0,
) -> TokenResponse:
    """Run one interactive authorization-code login.

    Parameters
    ----------
    client_id : str
        The application (client) identifier.
    environment : IdentityEnvironment
        The identity-provider environment.
    tenant_id : str
        Tenant to sign in to.
    open_uri : callable
        Coroutine function that opens a URL in the user's browser.
    exchanger : TokenExchanger
        Client for the token endpoint.
    scope : str
        Scopes requested in the authorize request.
    port_timeout : float
        Seconds to wait for the listener's port.
    code_timeout : float
        Seconds to wait for the browser callback.
    response_timeout : float
        Seconds the callback request waits for the final redirect.
    close_grace : float
        Seconds the listener stays up after the attempt concludes.

    Returns
    -------
    TokenResponse
        Tokens issued for the authorization code.

    Raises
    ------
    LoginFailed
        On any failure. ``PortTimeout``, ``CodeTimeout``,
        ``CallbackError`` and ``TokenExchangeFailed`` propagate as-is;
        anything else is wrapped with the cause in ``reason``.
    """
    flow_id = secrets.token_urlsafe(8)
    nonce = generate_nonce()
    listener = RedirectListener(
        nonce,
        port_timeout=port_timeout,
        code_timeout=code_timeout,
        response_timeout=response_timeout,
    )

    try:
        # 1. Bind the listener; the redirect URI needs the real port
        port = await listener.start()
        state = f"{port},{quote(nonce, safe='')}"
        redirect_uri = listener.redirect_uri
        logger.info("Login %s: listening at %s", flow_id, redirect_uri)

        # 2. Send the browser to the provider
        authorize_url = build_authorize_url(
            environment, tenant_id, client_id, redirect_uri, state, scope=scope
        )
        try:
            await asyncio.wait_for(open_uri(authorize_url), timeout=code_timeout)
        except asyncio.TimeoutError as exc:
            msg = "Timeout opening the sign-in page"
            raise CodeTimeout(msg, timeout=code_timeout, flow_id=flow_id) from exc

        # 3. Wait for the callback
        result = await listener.outcome
        response = result.response

        # 4. Exchange the code, then tell the browser how it went
        try:
            if result.error is not None:
                raise result.error
            token_response = await exchanger.exchange_code(
                client_id, environment, redirect_uri, tenant_id, result.code or ""
            )
        except BaseException as exc:
            response.redirect_error(_error_message(exc))
            raise
        response.redirect_success()

        logger.info("Login %s completed for %s", flow_id, environment.name)
        return token_response

    except LoginFailed:
        raise
    except Exception as exc:
        msg = f"Login failed: {_error_message(exc)}"
        raise LoginFailed(msg, reason=exc, environment=environment.name, flow_id=flow_id) from exc
    finally:
        listener.close_later(close_grace)
