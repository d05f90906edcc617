"""
ShipLog — GitHub webhook signature verification.

GitHub signs every delivery with HMAC-SHA256 over the raw request body
and sends it as ``X-Hub-Signature-256: sha256=<hex>``.
"""

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def sign(raw_body: bytes, secret: str) -> str:
    """Compute the signature header value GitHub would send for ``raw_body``."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify(raw_body: bytes, provided_signature: str | None, shared_secret: str) -> bool:
    """
    Return True only when ``provided_signature`` matches the body.

    Never raises. A False result means "reject with 401", never "retry".
    """
    if not provided_signature or not shared_secret:
        return False
    if not provided_signature.startswith(SIGNATURE_PREFIX):
        return False

    try:
        provided = provided_signature[len(SIGNATURE_PREFIX):].encode("ascii")
    except UnicodeEncodeError:
        return False

    expected = sign(raw_body, shared_secret)[len(SIGNATURE_PREFIX):].encode("ascii")
    # compare_digest does not short-circuit on the first differing byte
    return hmac.compare_digest(expected, provided)
