"""PKCE (Proof Key for Code Exchange) generation and verification.

Implements RFC 7636 with the S256 method to prevent authorization code
interception attacks on public clients.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from passage.auth.models.security import PKCEParameters

MIN_VERIFIER_BYTES = 32
MAX_VERIFIER_BYTES = 96  # 96 bytes encode to the 128 character maximum


class PKCEManager:
    """Generates PKCE verifier/challenge pairs.

    Stateless, so one instance can be shared by concurrent flows.

    This implementation follows RFC 7636 requirements:
    - Uses S256 code challenge method (SHA256 + base64url)
    - Generates code verifiers from the OS CSPRNG
    """

    def __init__(self, verifier_bytes: int = MIN_VERIFIER_BYTES):
        if not (MIN_VERIFIER_BYTES <= verifier_bytes <= MAX_VERIFIER_BYTES):
            raise ValueError(
                f"verifier_bytes must be between {MIN_VERIFIER_BYTES} "
                f"and {MAX_VERIFIER_BYTES}"
            )
        self.verifier_bytes = verifier_bytes

    def generate_parameters(self) -> PKCEParameters:
        """Generate new PKCE parameters for one authorization attempt.

        Returns:
            PKCEParameters: Immutable verifier, challenge and method
        """
        code_verifier = self._generate_code_verifier()
        return PKCEParameters(
            code_verifier=code_verifier,
            code_challenge=self.compute_challenge(code_verifier),
            code_challenge_method="S256",
        )

    @staticmethod
    def compute_challenge(code_verifier: str) -> str:
        """Generate code challenge from code verifier using S256 method.

        RFC 7636 Section 4.2: For S256, the code challenge is:
        BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))

        Args:
            code_verifier: The code verifier to hash

        Returns:
            Base64url-encoded SHA256 hash of the code verifier, no padding
        """
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    @classmethod
    def verify(cls, code_verifier: str, code_challenge: str) -> bool:
        """Check a verifier against a challenge in constant time."""
        try:
            expected = cls.compute_challenge(code_verifier)
        except UnicodeEncodeError:
            return False
        return secrets.compare_digest(expected, code_challenge)

    def _generate_code_verifier(self) -> str:
        """Generate a cryptographically secure code verifier.

        RFC 7636 Section 4.1: 43-128 characters from the unreserved set.
        base64url output stays within that set once padding is stripped.
        """
        return secrets.token_urlsafe(self.verifier_bytes)
