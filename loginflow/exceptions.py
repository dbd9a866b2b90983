"""loginflow exception hierarchy.

All loginflow-specific exceptions inherit from LoginFlowException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class LoginFlowException(Exception):
    """Base exception for all loginflow errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize loginflow exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (environment, flow_id, timeout, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        context = {k: v for k, v in self.context.items() if v is not None}
        if context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in context.items())
            return f"{self.message} ({ctx})"
        return self.message


class AuthenticationError(LoginFlowException):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including
    the authorization code flow, token exchange, or session management.
    """

    def __init__(
        self,
        message: str,
        environment: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        environment : str, optional
            Name of the identity-provider environment involved.
        flow_id : str, optional
            The unique identifier of the login attempt that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, environment=environment, flow_id=flow_id, **context)
        self.environment = environment
        self.flow_id = flow_id


class LoginFailed(AuthenticationError):
    """A login stage failed.

    ``reason`` holds the underlying cause (a provider error payload,
    a transport exception) when one is available.
    """

    def __init__(self, message: str, reason: Any = None, **context: Any) -> None:
        """Initialize login failure.

        Parameters
        ----------
        message : str
            Human-readable error message.
        reason : Any, optional
            The underlying cause of the failure.
        **context : Any
            Additional context.
        """
        super().__init__(message, **context)
        self.reason = reason


class PortTimeout(LoginFailed):
    """The redirect listener did not report a bound port in time.

    Also raised when the listener errors or closes before binding.
    """

    def __init__(self, message: str, timeout: float, **context: Any) -> None:
        """Initialize port timeout.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The port wait in seconds.
        **context : Any
            Additional context.
        """
        super().__init__(message, timeout=timeout, **context)
        self.timeout = timeout


class CodeTimeout(LoginFailed):
    """No authorization callback arrived before the deadline."""

    def __init__(self, message: str, timeout: float, **context: Any) -> None:
        """Initialize code timeout.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The callback wait in seconds.
        **context : Any
            Additional context.
        """
        super().__init__(message, timeout=timeout, **context)
        self.timeout = timeout


class CallbackError(LoginFailed):
    """The redirect callback was rejected.

    Covers a provider-reported error, a nonce mismatch, or a
    callback without an authorization code.
    """


class TokenExchangeFailed(LoginFailed):
    """The token endpoint could not be reached or refused the request."""

    def __init__(self, message: str, status_code: int | None = None, **context: Any) -> None:
        """Initialize token exchange failure.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the token endpoint.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class RefreshFailed(LoginFailed):
    """The provider answered a refresh-token exchange with an error."""


class Offline(LoginFailed):
    """The user declined to continue without network connectivity."""


class NotSignedIn(LoginFailed):
    """A refresh was attempted with no stored refresh token."""
