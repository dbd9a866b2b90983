"""Pluggable secret storage for refresh tokens.

Provides the SecretStore ABC with in-memory and OS keyring backends, plus
the best-effort refresh-token helpers used by the login orchestrator.
A missing store is a supported configuration: every helper becomes a
no-op.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import threading

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import keyring

from keyring.errors import PasswordDeleteError


if TYPE_CHECKING:
    from ..types import IdentityEnvironment


logger = logging.getLogger("loginflow.auth")

DEFAULT_SERVICE_NAME = "loginflow"


class SecretStore(ABC):
    """Abstract base class for secret storage.

    All methods are async to support both local and OS-backed stores.
    """

    @abstractmethod
    async def get(self, account: str) -> str | None:
        """Load the secret stored for ``account``.

        Parameters
        ----------
        account : str
            Account (key) the secret is stored under.

        Returns
        -------
        str or None
            The secret, or None if not found.
        """

    @abstractmethod
    async def set(self, account: str, value: str) -> None:
        """Store ``value`` for ``account``, replacing any previous secret."""

    @abstractmethod
    async def delete(self, account: str) -> None:
        """Delete the secret for ``account``. Missing entries are ignored."""


class MemorySecretStore(SecretStore):
    """In-memory secret store for tests and single-process use."""

    def __init__(self) -> None:
        """Initialize the memory secret store."""
        self._secrets: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, account: str) -> str | None:
        """Load a secret from memory."""
        async with self._lock:
            return self._secrets.get(account)

    async def set(self, account: str, value: str) -> None:
        """Store a secret in memory."""
        async with self._lock:
            self._secrets[account] = value

    async def delete(self, account: str) -> None:
        """Delete a secret from memory."""
        async with self._lock:
            self._secrets.pop(account, None)


class KeyringSecretStore(SecretStore):
    """OS keyring-backed secret store.

    Keyring calls block, so they run in the default executor.

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "loginflow").
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME) -> None:
        """Initialize the keyring secret store."""
        self._service_name = service_name

    @property
    def service_name(self) -> str:
        """The keyring service name."""
        return self._service_name

    async def get(self, account: str) -> str | None:
        """Load a secret from the OS keyring."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, keyring.get_password, self._service_name, account
        )

    async def set(self, account: str, value: str) -> None:
        """Store a secret in the OS keyring."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, keyring.set_password, self._service_name, account, value
        )

    async def delete(self, account: str) -> None:
        """Delete a secret from the OS keyring."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, keyring.delete_password, self._service_name, account
            )
        except PasswordDeleteError:
            logger.debug("No keyring entry to delete for %s", account)


_secret_store_instance: SecretStore | None = None
_secret_store_lock = threading.Lock()


def get_secret_store(backend: str = "keyring", **kwargs: Any) -> SecretStore | None:
    """Factory function for secret stores.

    Returns a singleton instance. Call ``reset_secret_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "keyring", "memory", or "none".
    **kwargs : Any
        Additional keyword arguments passed to the store constructor.

    Returns
    -------
    SecretStore or None
        A configured secret store, or None for the "none" backend.
    """
    global _secret_store_instance  # noqa: PLW0603

    if backend == "none":
        return None

    with _secret_store_lock:
        if _secret_store_instance is not None:
            return _secret_store_instance

        if backend == "memory":
            _secret_store_instance = MemorySecretStore()
        elif backend == "keyring":
            service_name = kwargs.get("service_name", DEFAULT_SERVICE_NAME)
            _secret_store_instance = KeyringSecretStore(service_name=service_name)
        else:
            msg = f"Unknown secret store backend: {backend}"
            raise ValueError(msg)

        return _secret_store_instance


def reset_secret_store() -> None:
    """Reset the singleton secret store instance."""
    global _secret_store_instance  # noqa: PLW0603

    with _secret_store_lock:
        _secret_store_instance = None


def legacy_account(environment: IdentityEnvironment) -> str:
    """Account name used by earlier releases for ``environment``'s refresh token."""
    return f"{environment.name}_refresh-token"


async def get_refresh_token(
    store: SecretStore | None,
    environment: IdentityEnvironment,
    migrate_token: bool = False,
) -> str | None:
    """Load the persisted refresh token for ``environment``.

    Parameters
    ----------
    store : SecretStore or None
        The secret store. None means no persistence.
    environment : IdentityEnvironment
        The environment the token belongs to.
    migrate_token : bool
        Move a token stored under the legacy account name first. An
        existing token under the current name is never overwritten.

    Returns
    -------
    str or None
        The refresh token, or None if absent or unreadable.
    """
    if store is None:
        return None

    if migrate_token:
        try:
            legacy = await store.get(legacy_account(environment))
            if legacy:
                if not await store.get(environment.name):
                    await store.set(environment.name, legacy)
                await store.delete(legacy_account(environment))
                logger.info("Migrated stored refresh token for %s", environment.name)
        except Exception:
            logger.warning("Refresh token migration failed for %s", environment.name, exc_info=True)

    try:
        return await store.get(environment.name)
    except Exception:
        logger.warning("Reading the refresh token for %s failed", environment.name, exc_info=True)
        return None


async def store_refresh_token(
    store: SecretStore | None,
    environment: IdentityEnvironment,
    refresh_token: str | None,
) -> None:
    """Persist ``refresh_token`` for ``environment``. Errors are logged."""
    if store is None or not refresh_token:
        return
    try:
        await store.set(environment.name, refresh_token)
    except Exception:
        logger.warning("Storing the refresh token for %s failed", environment.name, exc_info=True)


async def delete_refresh_token(store: SecretStore | None, environment_name: str) -> None:
    """Delete the persisted refresh token for ``environment_name``. Errors are logged."""
    if store is None:
        return
    try:
        await store.delete(environment_name)
    except Exception:
        logger.warning("Deleting the refresh token for %s failed", environment_name, exc_info=True)
