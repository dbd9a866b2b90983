"""Top-level login sequencing.

``LoginOrchestrator`` ties the pieces together: silent re-authentication
from a persisted refresh token at startup, interactive login gated on
connectivity, token retrieval with refresh and login fallback, and
logout.
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes,too-many-arguments

from __future__ import annotations

import asyncio
import contextlib
import logging
import time

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..config import get_settings
from ..events import CancellationTokenSource
from ..exceptions import LoginFailed, LoginFlowException, NotSignedIn, Offline
from ..telemetry import LoggingReporter, get_error_message, send_login_telemetry
from ..types import DEFAULT_ENVIRONMENT, LoginStatus, Token
from . import code_flow
from .connectivity import become_online, delay, is_online, race
from .secret_store import (
    delete_refresh_token,
    get_refresh_token,
    get_secret_store,
    store_refresh_token,
)
from .session_store import SessionStore
from .token_exchange import TokenExchanger


if TYPE_CHECKING:
    from ..config import LoginFlowSettings
    from ..events import EventEmitter
    from ..telemetry import TelemetryReporter
    from ..types import IdentityEnvironment, Session
    from .connectivity import Probe
    from .secret_store import SecretStore


logger = logging.getLogger("loginflow.auth")

OfflinePrompt = Callable[[], Awaitable[bool]]

# Marks "use the backend named in the settings"; None means no persistence.
_FROM_SETTINGS: Any = object()


class LoginOrchestrator:
    """Login lifecycle for one account.

    Parameters
    ----------
    settings : LoginFlowSettings, optional
        Configuration (default: ``get_settings()``).
    environment : IdentityEnvironment, optional
        Environment used when a call does not name one (default: the
        configured environment).
    secret_store : SecretStore or None, optional
        Refresh-token persistence. Defaults to the configured backend;
        pass None to disable persistence.
    reporter : TelemetryReporter, optional
        Receives ``login`` events (default: log them).
    open_uri : callable, optional
        Opens the authorize URL (default: the system browser).
    offline_prompt : callable, optional
        Asked when connectivity is slow to appear; returning True
        cancels the login with ``Offline``.
    exchanger : TokenExchanger, optional
        Token endpoint client.
    probe : callable, optional
        Connectivity probe (default ``is_online``).
    """

    def __init__(
        self,
        *,
        settings: LoginFlowSettings | None = None,
        environment: IdentityEnvironment | None = None,
        secret_store: SecretStore | None = _FROM_SETTINGS,
        reporter: TelemetryReporter | None = None,
        open_uri: code_flow.OpenUri | None = None,
        offline_prompt: OfflinePrompt | None = None,
        exchanger: TokenExchanger | None = None,
        probe: Probe | None = None,
    ) -> None:
        """Initialize the orchestrator."""
        self.settings = settings or get_settings()
        self.environment = environment or self.settings.environment.to_environment()
        self.tenant_id = self.settings.environment.tenant
        if secret_store is _FROM_SETTINGS:
            secret_store = get_secret_store(
                self.settings.secrets.backend,
                service_name=self.settings.secrets.service_name,
            )
        self.secret_store = secret_store
        self.reporter = reporter or LoggingReporter()
        self.open_uri = open_uri or code_flow.open_in_browser
        self.offline_prompt = offline_prompt
        self.exchanger = exchanger or TokenExchanger(
            timeout=self.settings.timeout.http,
            scope=self.settings.environment.scope,
        )
        self.probe = probe or is_online
        self.store = SessionStore()
        self.refresh_buffer_seconds = 60
        self._init_task: asyncio.Task[None] | None = None
        self._init_requested = False

    @property
    def status(self) -> LoginStatus:
        """The current login status."""
        return self.store.status

    @property
    def sessions(self) -> list[Session]:
        """The current sessions."""
        return self.store.sessions

    @property
    def on_status_changed(self) -> EventEmitter[LoginStatus]:
        """Fires with the new status on every status change."""
        return self.store.on_status_changed

    @property
    def on_sessions_changed(self) -> EventEmitter[None]:
        """Fires on every session-set replacement."""
        return self.store.on_sessions_changed

    def start(self) -> asyncio.Task[None]:
        """Schedule silent re-authentication on the running loop."""
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(
                self.initialize("activation", migrate_token=True)
            )
        return self._init_task

    def _ensure_started(self) -> None:
        """Begin silent sign-in if nothing has left ``Initializing`` yet."""
        if not self._init_requested and self.store.status is LoginStatus.INITIALIZING:
            self.start()

    async def initialize(self, trigger: str = "activation", migrate_token: bool = False) -> None:
        """Sign in silently with the persisted refresh token.

        Never raises: any failure clears the sessions and leaves the
        status ``LoggedOut``.
        """
        self._init_requested = True
        environment = self.environment
        try:
            await self._get_token_for_environment(environment, migrate_token=migrate_token)
            logger.info("Signed in to %s with the stored refresh token", environment.name)
            self._send_telemetry(trigger, "tryExisting", environment.name, "success")
        except Exception as exc:
            logger.info("Silent sign-in to %s failed: %s", environment.name, exc)
            self.store.clear_sessions()
            self._report_failure(trigger, "tryExisting", environment.name, exc)
        finally:
            self.store.update_status()

    async def login(self, environment: IdentityEnvironment | None = None, trigger: str = "login") -> Token:
        """Sign in interactively.

        Parameters
        ----------
        environment : IdentityEnvironment, optional
            Environment to sign in to (default: the orchestrator's).
        trigger : str
            What started the attempt, for telemetry.

        Returns
        -------
        Token
            The newly issued token.

        Raises
        ------
        LoginFailed
            When the attempt fails; ``Offline`` when the user gives up
            waiting for connectivity.
        """
        environment = environment or self.environment
        timeouts = self.settings.timeout
        path = "newLogin"
        source = CancellationTokenSource()
        online = asyncio.ensure_future(
            become_online(environment, timeouts.online_poll, source.token, probe=self.probe)
        )
        prompt_timer = asyncio.ensure_future(delay(timeouts.offline_prompt, True))
        try:
            if await race(online, prompt_timer):
                logger.warning("No connection to %s yet", environment.active_directory_endpoint_url)
                if self.offline_prompt is not None:
                    prompt = asyncio.ensure_future(self.offline_prompt())
                    try:
                        gave_up = await race(online, prompt)
                    finally:
                        prompt.cancel()
                    if gave_up:
                        raise Offline("Offline", environment=environment.name)
                await online

            self.store.begin_logging_in()
            path = "newLoginCodeFlow"
            response = await code_flow.login(
                environment.oauth_app_id,
                environment,
                self.tenant_id,
                self.open_uri,
                exchanger=self.exchanger,
                scope=self.settings.environment.scope,
                port_timeout=timeouts.port,
                code_timeout=timeouts.code,
                response_timeout=timeouts.callback_response,
                close_grace=timeouts.close_grace,
            )
            await store_refresh_token(self.secret_store, environment, response.refresh_token)
            self.store.update_sessions(environment, [response])
            self._send_telemetry(trigger, path, environment.name, "success")
            return Token.from_response(response)
        except Exception as exc:
            self._report_failure(trigger, path, environment.name, exc)
            raise
        finally:
            source.cancel()
            source.dispose()
            online.cancel()
            prompt_timer.cancel()
            self.store.update_status()

    async def get_token(self, environment: IdentityEnvironment | None = None) -> Token:
        """Return a usable token, refreshing or signing in as needed.

        Waits for any login in progress. A cached token that is not
        about to expire is returned as-is; otherwise the refresh token
        is used, and if that fails an interactive login runs.
        """
        environment = environment or self.environment
        self._ensure_started()
        if await self.store.wait_for_login():
            try:
                cached = await self._cached_token(environment)
                if cached is not None:
                    return cached
                return await self._get_token_for_environment(environment)
            except LoginFlowException as exc:
                logger.info("Token refresh for %s failed, signing in again: %s", environment.name, exc)
        return await self.login(environment, "login")

    async def logout(self) -> None:
        """Forget the persisted refresh tokens and the current sessions."""
        self._ensure_started()
        await self.store.wait_for_login()
        names = [DEFAULT_ENVIRONMENT.name, self.environment.name]
        names.extend(session.environment.name for session in self.store.sessions)
        for name in dict.fromkeys(names):
            await delete_refresh_token(self.secret_store, name)
        self.store.clear_sessions()
        self.store.update_status()
        logger.info("Signed out")

    async def wait_for_login(self) -> bool:
        """Wait until no login is in progress; True when logged in."""
        return await self.store.wait_for_login()

    async def aclose(self) -> None:
        """Stop a pending startup sign-in and close the HTTP client."""
        task = self._init_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.exchanger.aclose()

    async def __aenter__(self) -> LoginOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _cached_token(self, environment: IdentityEnvironment) -> Token | None:
        """A cached token for ``environment`` valid beyond the refresh buffer."""
        deadline = time.time() + self.refresh_buffer_seconds
        for entry in await self.store.token_cache.find():
            if (
                entry.client_id == environment.oauth_app_id
                and entry.authority.startswith(environment.active_directory_endpoint_url)
                and entry.response.access_token
                and entry.response.expires_on > deadline
            ):
                return Token.from_response(entry.response)
        return None

    async def _get_token_for_environment(
        self,
        environment: IdentityEnvironment,
        migrate_token: bool = False,
    ) -> Token:
        """Redeem the persisted refresh token and publish the new session."""
        refresh_token = await get_refresh_token(self.secret_store, environment, migrate_token)
        if not refresh_token:
            raise NotSignedIn("Not signed in", environment=environment.name)

        await become_online(environment, self.settings.timeout.refresh_online_wait, probe=self.probe)
        self.store.begin_logging_in()
        response = await self.exchanger.exchange_refresh_token(
            environment, refresh_token, self.tenant_id
        )
        if self.settings.test_token_failure:
            raise LoginFailed("Testing: Acquiring token failed", environment=environment.name)

        await store_refresh_token(self.secret_store, environment, response.refresh_token)
        self.store.update_sessions(environment, [response])
        return Token.from_response(response)

    def _send_telemetry(
        self,
        trigger: str,
        path: str,
        cloud: str,
        outcome: str,
        message: str | None = None,
    ) -> None:
        send_login_telemetry(self.reporter, trigger, path, cloud, outcome, message)

    def _report_failure(self, trigger: str, path: str, cloud: str, exc: BaseException) -> None:
        """Report a failed attempt; ``error`` when an underlying cause is known."""
        reason = getattr(exc, "reason", None)
        if isinstance(exc, LoginFailed) and reason is not None:
            logger.error("Login via %s failed: %s", path, reason)
            message = get_error_message(reason) or get_error_message(exc)
            self._send_telemetry(trigger, path, cloud, "error", message)
        else:
            self._send_telemetry(trigger, path, cloud, "failure", get_error_message(exc))
