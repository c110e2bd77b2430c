"""HMAC signatures of webhook deliveries.

GitHub signs each delivery with the shared secret and sends the result
as "sha1=<hex>" in X-Hub-Signature and "sha256=<hex>" in
X-Hub-Signature-256.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import string
from typing import TYPE_CHECKING

from prbuilder.config.schema import SignatureAlgorithm

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

_HEX_DIGITS = frozenset(string.hexdigits)


class SignatureVerifier:
    """Signs payloads and verifies signatures in constant time.

    Usage:
        verifier = SignatureVerifier("sha256")
        header = verifier.sign(body, secret)
        assert verifier.verify(body, header, secret)
    """

    def __init__(self, algorithm: SignatureAlgorithm | str = SignatureAlgorithm.SHA1) -> None:
        """Initialize signature verifier.

        Args:
            algorithm: "sha1" or "sha256".

        Raises:
            ValueError: If the algorithm is not supported.
        """
        self._algorithm = SignatureAlgorithm(algorithm)
        self._digest_size = hashlib.new(self._algorithm.value).digest_size

    @property
    def algorithm(self) -> SignatureAlgorithm:
        """Get the hash algorithm."""
        return self._algorithm

    @property
    def prefix(self) -> str:
        """Get the signature prefix, e.g. "sha1="."""
        return f"{self._algorithm.value}="

    @property
    def header_name(self) -> str:
        """Get the HTTP header GitHub sends this signature in."""
        if self._algorithm == SignatureAlgorithm.SHA256:
            return "X-Hub-Signature-256"
        return "X-Hub-Signature"

    def _digest(self, payload: bytes, secret: str) -> str:
        return hmac.new(
            key=secret.encode("utf-8"),
            msg=payload,
            digestmod=self._algorithm.value,
        ).hexdigest()

    def sign(self, payload: bytes, secret: str) -> str:
        """Compute the signature header value for a payload.

        Raises:
            ValueError: If the secret is empty.
        """
        if not secret:
            msg = "secret must not be empty"
            raise ValueError(msg)
        return self.prefix + self._digest(payload, secret)

    def verify(self, payload: bytes, signature: str | None, secret: str) -> bool:
        """Check a signature header value against a payload.

        Never raises; malformed input verifies as False.

        Args:
            payload: Raw request body.
            signature: Header value, e.g. "sha1=<hex>".
            secret: Shared secret.

        Returns:
            True if the signature is valid.
        """
        if not isinstance(payload, bytes | bytearray) or not isinstance(signature, str):
            return False
        if not secret or not isinstance(secret, str):
            return False
        if not signature.startswith(self.prefix):
            logger.debug("Signature does not start with %r", self.prefix)
            return False

        received = signature[len(self.prefix) :]
        if len(received) != self._digest_size * 2 or not set(received) <= _HEX_DIGITS:
            logger.debug("Malformed %s signature", self._algorithm.value)
            return False

        expected = self._digest(bytes(payload), secret)
        return hmac.compare_digest(received.lower(), expected)

    def verify_any(
        self,
        payload: bytes,
        signature: str | None,
        secrets: Iterable[str],
    ) -> bool:
        """Check a signature against several secrets (rotation)."""
        return any(self.verify(payload, signature, secret) for secret in secrets)
