"""Shared secret generation for the agent server."""

from __future__ import annotations

import secrets
import string


SECRET_ALPHABET = string.ascii_letters + string.digits
SECRET_LENGTH = 32


def generate_secret_key(length: int = SECRET_LENGTH) -> str:
    """Generate a random alphanumeric secret using the OS CSPRNG."""
    return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))
