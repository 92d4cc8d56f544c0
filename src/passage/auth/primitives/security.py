"""State parameter generation and validation for the authorization code flow."""

from __future__ import annotations

import secrets
import string

from passage.auth.models.errors import StateValidationError

STATE_LENGTH = 32


def generate_state() -> str:
    """Generate cryptographically secure state parameter.

    The state parameter provides CSRF protection by ensuring the callback
    matches the original authorization request.

    Returns:
        Cryptographically secure random state string (32 characters)
    """
    alphabet = string.ascii_letters + string.digits + "-._~"
    return "".join(secrets.choice(alphabet) for _ in range(STATE_LENGTH))


def validate_state(expected: str, actual: str | None) -> None:
    """Validate state parameter matches expected value.

    Raises:
        StateValidationError: If the state is missing or doesn't match
    """
    if not actual:
        raise StateValidationError("Callback is missing the state parameter")
    if not secrets.compare_digest(expected.encode(), actual.encode()):
        raise StateValidationError("State parameter mismatch - possible CSRF attack")
