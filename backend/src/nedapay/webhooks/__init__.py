"""Inbound webhook verification and processing."""

from nedapay.webhooks.signature import (
    WebhookVerifier,
    compute_signature,
    generate_smile_id_signature,
    is_timestamp_fresh,
    verify_signature,
    verify_smile_id_signature,
)

__all__ = [
    "WebhookVerifier",
    "compute_signature",
    "generate_smile_id_signature",
    "is_timestamp_fresh",
    "verify_signature",
    "verify_smile_id_signature",
]
