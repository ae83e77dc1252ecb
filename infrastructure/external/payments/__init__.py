"""
Payment processor adapters: HTTP client and webhook signature verifier.
"""
from .signature import WebhookSignatureVerifier, compute_signature
from .stripe_client import StripeClient, flatten_params

__all__ = [
    "StripeClient",
    "WebhookSignatureVerifier",
    "compute_signature",
    "flatten_params",
]
