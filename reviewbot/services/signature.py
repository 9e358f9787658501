"""
Webhook signature validation.

GitHub signs each delivery with HMAC-SHA256 over the raw request body and
sends the digest as ``X-Hub-Signature-256: sha256=<hex>``.
"""

import hashlib
import hmac
from typing import Optional

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` header value for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class SignatureValidator:
    """Validates webhook signatures against the shared secret."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Webhook secret must not be empty")
        self._secret = secret

    def is_valid(self, body: bytes, signature_header: Optional[str]) -> bool:
        """
        Check a signature header against the raw body.

        Args:
            body: Raw request body, exactly as received
            signature_header: Value of ``X-Hub-Signature-256``

        Returns:
            True only for a well-formed header with a matching digest
        """
        if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
            return False

        expected = compute_signature(body, self._secret)
        return hmac.compare_digest(
            expected.encode("utf-8"),
            signature_header.strip().lower().encode("utf-8"),
        )
