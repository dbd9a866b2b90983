"""In-memory session state and login status.

``SessionStore`` owns the single mutable piece of shared state: the
current session set and the token cache behind it. Both are replaced
wholesale by ``update_sessions`` and ``clear_sessions``, so readers see
either the old set or the new one.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import threading

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..events import EventEmitter, Signal
from ..types import LoginStatus, Session, Token


if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..types import IdentityEnvironment, TokenResponse


logger = logging.getLogger("loginflow.auth")


@dataclass(frozen=True)
class CacheEntry:
    """One cached token response and the coordinates it was issued for."""

    authority: str
    client_id: str
    resource: str | None
    response: TokenResponse


class TokenCache:
    """Token responses of the current session set.

    Reads wait for the readiness gate, which opens the first time the
    session set is populated or cleared.
    """

    def __init__(self, ready: Signal) -> None:
        """Initialize an empty cache behind ``ready``."""
        self._ready = ready
        self._entries: tuple[CacheEntry, ...] = ()

    def replace(self, entries: Iterable[CacheEntry]) -> None:
        """Swap in a new set of entries."""
        self._entries = tuple(entries)

    def clear(self) -> None:
        """Remove all entries."""
        self._entries = ()

    def __len__(self) -> int:
        return len(self._entries)

    async def find(
        self,
        resource: str | None = None,
        tenant_id: str | None = None,
        user_id: str | None = None,
    ) -> list[CacheEntry]:
        """Return the entries matching every given criterion.

        Parameters
        ----------
        resource : str, optional
            Resource the token was issued for.
        tenant_id : str, optional
            Tenant of the token.
        user_id : str, optional
            User the token belongs to.

        Returns
        -------
        list[CacheEntry]
            Matching entries, in insertion order.
        """
        await self._ready.wait()
        entries = self._entries
        return [
            entry
            for entry in entries
            if (resource is None or entry.resource == resource)
            and (tenant_id is None or entry.response.tenant_id == tenant_id)
            and (user_id is None or entry.response.user_id == user_id)
        ]


class SessionStore:
    """Current sessions, derived login status, and change notifications.

    Status starts at ``Initializing`` and is ``LoggedIn`` exactly when a
    session is present after a mutation. Once logged in, a new attempt
    does not demote the status to ``LoggingIn``.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._lock = threading.Lock()
        self._sessions: tuple[Session, ...] = ()
        self._status = LoginStatus.INITIALIZING
        self.ready = Signal()
        self.token_cache = TokenCache(self.ready)
        self.on_status_changed: EventEmitter[LoginStatus] = EventEmitter()
        self.on_sessions_changed: EventEmitter[None] = EventEmitter()

    @property
    def status(self) -> LoginStatus:
        """The current login status."""
        return self._status

    @property
    def sessions(self) -> list[Session]:
        """A copy of the current session set."""
        return list(self._sessions)

    def _set_status(self, status: LoginStatus) -> None:
        with self._lock:
            if self._status == status:
                return
            previous, self._status = self._status, status
        logger.debug("Login status %s -> %s", previous.value, status.value)
        self.on_status_changed.fire(status)

    def begin_logging_in(self) -> None:
        """Move to ``LoggingIn`` unless already logged in."""
        if self._status != LoginStatus.LOGGED_IN:
            self._set_status(LoginStatus.LOGGING_IN)

    def update_status(self) -> None:
        """Derive the status from the session set; notify on change only."""
        self._set_status(LoginStatus.LOGGED_IN if self._sessions else LoginStatus.LOGGED_OUT)

    def update_sessions(
        self,
        environment: IdentityEnvironment,
        token_responses: Iterable[TokenResponse],
    ) -> None:
        """Replace the session set with sessions built from ``token_responses``.

        Sessions-changed fires even when the contents are unchanged;
        listeners treat it as a cache invalidation.

        Parameters
        ----------
        environment : IdentityEnvironment
            The environment the tokens were issued by.
        token_responses : iterable of TokenResponse
            The new token responses.
        """
        responses = list(token_responses)
        sessions = tuple(
            Session(
                environment=environment,
                user_id=response.user_id,
                tenant_id=response.tenant_id,
                token=Token.from_response(response),
            )
            for response in responses
        )
        entries = [
            CacheEntry(
                authority=environment.authority(response.tenant_id or ""),
                client_id=environment.oauth_app_id,
                resource=response.resource,
                response=response,
            )
            for response in responses
        ]
        with self._lock:
            self.token_cache.replace(entries)
            self._sessions = sessions
        self.ready.complete()
        self.on_sessions_changed.fire(None)
        self.update_status()

    def clear_sessions(self) -> None:
        """Drop every session and cached token."""
        with self._lock:
            self.token_cache.clear()
            self._sessions = ()
        self.ready.complete()
        self.on_sessions_changed.fire(None)
        self.update_status()

    async def find_tokens(
        self,
        resource: str | None = None,
        tenant_id: str | None = None,
        user_id: str | None = None,
    ) -> list[TokenResponse]:
        """Cached token responses matching the criteria, once the cache is ready."""
        entries = await self.token_cache.find(resource=resource, tenant_id=tenant_id, user_id=user_id)
        return [entry.response for entry in entries]

    async def wait_for_login(self) -> bool:
        """Wait until the status settles and report whether logged in.

        Returns
        -------
        bool
            True for ``LoggedIn``, False for ``LoggedOut``.
        """
        status = self._status
        if status == LoginStatus.LOGGED_IN:
            return True
        if status == LoginStatus.LOGGED_OUT:
            return False

        loop = asyncio.get_running_loop()
        changed: asyncio.Future[None] = loop.create_future()

        def _on_changed(_status: LoginStatus) -> None:
            subscription.dispose()
            if not changed.done():
                changed.set_result(None)

        subscription = self.on_status_changed.subscribe(_on_changed)
        try:
            await changed
        finally:
            subscription.dispose()
        return await self.wait_for_login()
