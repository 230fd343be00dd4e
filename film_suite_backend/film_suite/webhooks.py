"""
Signature checks for provider callbacks.

Both checks run on the raw request bytes before any field of the payload is
trusted, and compare digests in constant time.
"""
import hashlib
import hmac
import logging
import time
from typing import Optional

from .errors import SignatureError, StripeSignatureError

logger = logging.getLogger(__name__)

STRIPE_TOLERANCE_S = 300


def replicate_digest(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_replicate_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    if not secret:
        logger.error("REPLICATE_WEBHOOK_SECRET is not set; rejecting webhook")
        raise SignatureError()
    if not signature:
        raise SignatureError()
    expected = replicate_digest(body, secret)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        raise SignatureError()


def stripe_signature_header(body: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + body
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def verify_stripe_signature(body: bytes, header: Optional[str], secret: Optional[str],
                            tolerance: int = STRIPE_TOLERANCE_S, now: Optional[float] = None) -> None:
    if not secret or not header:
        raise StripeSignatureError()
    timestamp = None
    candidates = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            candidates.append(value)
    if not timestamp or not timestamp.isdigit() or not candidates:
        raise StripeSignatureError()
    now = time.time() if now is None else now
    if abs(now - int(timestamp)) > tolerance:
        logger.warning("Stripe signature timestamp outside tolerance")
        raise StripeSignatureError()
    expected = stripe_signature_header(body, secret, int(timestamp)).split("v1=", 1)[1]
    if not any(hmac.compare_digest(expected, c) for c in candidates):
        raise StripeSignatureError()
