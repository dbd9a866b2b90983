"""Login telemetry.

The orchestrator reports one ``login`` event per attempt through a
``TelemetryReporter``. The default reporter writes events to the
``loginflow.telemetry`` logger; hosts plug in their own sink.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import Any, Protocol, runtime_checkable


logger = logging.getLogger("loginflow.telemetry")


@runtime_checkable
class TelemetryReporter(Protocol):
    """Sink for named telemetry events."""

    def send_telemetry_event(self, event_name: str, properties: dict[str, str]) -> None:
        """Record ``event_name`` with string ``properties``."""


class LoggingReporter:
    """Reporter that logs events at INFO level."""

    def send_telemetry_event(self, event_name: str, properties: dict[str, str]) -> None:
        """Log the event."""
        logger.info("%s %s", event_name, properties)


def get_error_message(err: Any) -> str | None:
    """Best short description of ``err`` for reporting.

    Uses the error's ``message`` attribute when it has one, then its
    string form, then its type name.
    """
    if err is None:
        return None
    message = getattr(err, "message", None)
    if isinstance(message, str) and message:
        return message
    if isinstance(err, dict):
        description = err.get("error_description") or err.get("error")
        if description:
            return str(description)
    text = str(err)
    if text:
        return text.splitlines()[0]
    return type(err).__name__


def send_login_telemetry(
    reporter: TelemetryReporter,
    trigger: str,
    path: str,
    cloud: str,
    outcome: str,
    message: str | None = None,
) -> None:
    """Report one ``login`` event.

    Parameters
    ----------
    reporter : TelemetryReporter
        Where to send the event.
    trigger : str
        What started the attempt (``activation``, ``login``, ...).
    path : str
        Code path taken (``tryExisting``, ``newLogin``, ``newLoginCodeFlow``).
    cloud : str
        Environment name.
    outcome : str
        ``success``, ``failure`` or ``error``.
    message : str, optional
        Failure description.
    """
    event = {"trigger": trigger, "path": path, "cloud": cloud, "outcome": outcome}
    if message:
        event["message"] = message
    try:
        reporter.send_telemetry_event("login", event)
    except Exception:
        logger.warning("Telemetry reporter failed", exc_info=True)
