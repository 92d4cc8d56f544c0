"""JWT assertion signing for the JWT bearer grant (RFC 7523).

The signer holds only key references. Private keys are looked up through a
``KeyResolver`` at signing time and are never cached by the signer.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Protocol

import jwt
from cryptography.hazmat.primitives import serialization

from passage.auth.models.errors import InvalidClaimsError, SigningError

logger = logging.getLogger(__name__)

ASYMMETRIC_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384"}
)
DEFAULT_TTL_SECONDS = 180

_KEY_ALIAS = re.compile(r"^[A-Za-z0-9._-]+$")


class KeyResolver(Protocol):
    """Resolves an opaque key reference to private key material."""

    def resolve(self, key_ref: str) -> Any:
        """Return a private key usable by PyJWT for ``key_ref``.

        Raises:
            KeyError: If no key is known under ``key_ref``
        """
        ...


class InMemoryKeyResolver:
    """Key store backed by a dict of alias -> key.

    Suitable for tests and for hosts that load keys from their own vault at
    startup.
    """

    def __init__(self, keys: dict[str, Any] | None = None):
        self._keys: dict[str, Any] = dict(keys or {})

    def register(self, key_ref: str, key: Any) -> None:
        self._keys[key_ref] = key

    def resolve(self, key_ref: str) -> Any:
        return self._keys[key_ref]


class PemDirectoryKeyResolver:
    """Loads ``<key_ref>.pem`` from a directory each time a key is needed."""

    def __init__(self, directory: str | Path, password: bytes | None = None):
        self.directory = Path(directory)
        self._password = password

    def resolve(self, key_ref: str) -> Any:
        if not _KEY_ALIAS.match(key_ref):
            raise KeyError(key_ref)
        path = self.directory / f"{key_ref}.pem"
        if not path.is_file():
            raise KeyError(key_ref)
        return serialization.load_pem_private_key(
            path.read_bytes(), password=self._password
        )


class AssertionSigner:
    """Builds and signs short-lived JWT assertions.

    Claims follow RFC 7523 Section 3: ``iss`` is the client identifier,
    ``sub`` the principal being acted for, ``aud`` the authorization
    server's identity. Every assertion gets a fresh ``jti`` so none is ever
    replayed.
    """

    def __init__(
        self,
        key_resolver: KeyResolver,
        algorithm: str = "RS256",
        clock: Callable[[], float] = time.time,
    ):
        if algorithm not in ASYMMETRIC_ALGORITHMS:
            raise ValueError(
                f"Unsupported assertion algorithm {algorithm!r}; "
                "an asymmetric algorithm is required"
            )
        self._key_resolver = key_resolver
        self.algorithm = algorithm
        self._clock = clock

    def build_claims(
        self,
        subject: str,
        audience: str,
        issuer: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> dict[str, Any]:
        """Build the claim set.

        ``iat`` and ``exp`` are whole-second NumericDates (RFC 7519), so two
        assertions built within the same second share them and differ only
        in ``jti``.

        Raises:
            InvalidClaimsError: If subject, audience or issuer is blank,
                or the TTL is not positive
        """
        blank = [
            name
            for name, value in (
                ("sub", subject),
                ("aud", audience),
                ("iss", issuer),
            )
            if not value or not value.strip()
        ]
        if blank:
            raise InvalidClaimsError(f"Blank assertion claims: {', '.join(blank)}")
        if ttl_seconds <= 0:
            raise InvalidClaimsError(
                f"Assertion TTL must be positive, got {ttl_seconds}"
            )

        issued_at = int(self._clock())
        return {
            "iss": issuer,
            "sub": subject,
            "aud": audience,
            "iat": issued_at,
            "exp": issued_at + ttl_seconds,
            "jti": uuid.uuid4().hex,
        }

    def build_assertion(
        self,
        subject: str,
        audience: str,
        issuer: str,
        signing_key_ref: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> str:
        """Build and sign a compact JWT assertion.

        Returns:
            The signed assertion (header.claims.signature)

        Raises:
            InvalidClaimsError: If the claims are blank or out of range
            SigningError: If the key reference is unknown or signing fails
        """
        claims = self.build_claims(subject, audience, issuer, ttl_seconds)

        if not signing_key_ref or not signing_key_ref.strip():
            raise SigningError("Signing key reference is blank")

        try:
            key = self._key_resolver.resolve(signing_key_ref)
        except KeyError as e:
            raise SigningError(
                f"Unknown signing key reference {signing_key_ref!r}"
            ) from e
        except Exception as e:
            raise SigningError(
                f"Could not load signing key {signing_key_ref!r}: {e}"
            ) from e

        try:
            assertion = jwt.encode(
                claims,
                key,
                algorithm=self.algorithm,
                headers={"kid": signing_key_ref},
            )
        except Exception as e:
            # Includes keys PyJWT cannot sign with, such as a public key
            raise SigningError(f"Failed to sign assertion: {e!r}") from e

        logger.debug(
            f"Signed {self.algorithm} assertion for sub={subject} "
            f"aud={audience} kid={signing_key_ref} exp={claims['exp']}"
        )
        return assertion
