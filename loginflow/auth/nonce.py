"""CSRF nonce generation for the authorization redirect."""

from __future__ import annotations

import secrets

from base64 import b64encode


def generate_nonce(length: int = 16) -> str:
    """Return ``length`` random bytes, standard base64-encoded.

    The nonce may contain ``+``, ``/`` and ``=``; it is URL-encoded
    when embedded in the ``state`` parameter.
    """
    return b64encode(secrets.token_bytes(length)).decode("ascii")
