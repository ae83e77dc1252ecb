"""
Webhook signature verification (HMAC-SHA256 over the raw request body).

Two header shapes are accepted:
- a bare hex digest of HMAC(secret, payload)
- Stripe style `t=<unix ts>,v1=<hex>[,v1=<hex>...]`, checked by the stripe SDK
  (`stripe.WebhookSignature.verify_header`), including its tolerance window
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Optional

import stripe

from core.logging_config import get_logger
from domain.payment.exceptions import WebhookNotConfigured


logger = get_logger(__name__)


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _digest_equal(expected: str, candidate: str) -> bool:
    # bytes so a non-ASCII header compares unequal instead of raising
    return hmac.compare_digest(expected.encode("ascii"), candidate.strip().lower().encode("utf-8"))


class WebhookSignatureVerifier:
    def __init__(self, secret: Optional[str] = None, *, tolerance_seconds: int = 0) -> None:
        self._secret = secret
        self._tolerance = tolerance_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self._secret)

    def verify(self, payload: bytes, signature_header: Optional[str], secret: Optional[str] = None) -> bool:
        """
        True only for a matching signature; a mismatch is False, never an error.

        Raises WebhookNotConfigured when no secret is available.
        """
        secret = secret or self._secret
        if not secret:
            raise WebhookNotConfigured()
        if not signature_header:
            return False
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        header = signature_header.strip()
        if "v1=" not in header:
            return _digest_equal(compute_signature(payload, secret), header)
        return self._verify_timestamped(payload, header, secret)

    def _verify_timestamped(self, payload: bytes, header: str, secret: str) -> bool:
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            return False
        try:
            # tolerance None disables the SDK's replay window
            stripe.WebhookSignature.verify_header(body, header, secret, tolerance=self._tolerance or None)
        except stripe.SignatureVerificationError as exc:
            logger.warning("webhook_signature_rejected", reason=str(exc), tolerance=self._tolerance)
            return False
        return True
