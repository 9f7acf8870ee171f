"""HMAC-SHA256 signing of outbound notification bodies.

The signature covers the exact bytes sent on the wire, so receivers must
verify against the raw request body, not a re-serialized copy.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def sign_body(secret: str, body: bytes) -> str:
    """Return the signature header value ``sha256=<hex>`` for *body*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, body: bytes, header_value: str | None) -> bool:
    """Constant-time check of a received signature header."""
    if not header_value or not header_value.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(sign_body(secret, body), header_value.strip())
