"""Webhook signature generation and verification.

Provider webhooks carry an HMAC-SHA256 of the raw request body. The digest
must be computed over the bytes exactly as received; parsing and
re-serializing the JSON changes them.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timezone

from nedapay.exceptions import InvalidSignature, MissingSecret
from nedapay.logging_config import get_logger

logger = get_logger(__name__)

SMILE_ID_SIGNATURE_TYPE = "sid_request"

_PREFIX = "sha256="


def _as_bytes(secret: bytes | str) -> bytes:
    if isinstance(secret, str):
        return secret.encode("utf-8")
    return bytes(secret)


def compute_signature(raw_body: bytes, secret: bytes | str) -> str:
    """Generate the hex HMAC-SHA256 of a raw webhook body."""
    return hmac.new(_as_bytes(secret), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    provided_signature: str | None,
    secret: bytes | str | None,
) -> bool:
    """Verify a webhook signature against the raw body.

    Accepts a bare hex digest or one prefixed with ``sha256=``. Returns
    False when the signature or the secret is missing.
    """
    if not provided_signature or not secret:
        return False

    signature = provided_signature.strip()
    if signature[:len(_PREFIX)].lower() == _PREFIX:
        signature = signature[len(_PREFIX):]

    if not signature.isascii():
        return False

    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.lower())


class WebhookVerifier:
    """Signature check bound to one provider's secret and header."""

    def __init__(self, provider: str, header: str, secret: bytes | str | None):
        """Initialize verifier.

        Args:
            provider: Provider name used in logs and errors
            header: HTTP header carrying the signature
            secret: Shared secret

        Raises:
            MissingSecret: If the secret is empty or unset
        """
        if not secret or (isinstance(secret, str) and not secret.strip()):
            raise MissingSecret(f"{provider} webhook secret")

        self.provider = provider
        self.header = header
        self._secret = _as_bytes(secret)

    def sign(self, raw_body: bytes) -> str:
        return compute_signature(raw_body, self._secret)

    def verify(self, raw_body: bytes, signature: str | None) -> bool:
        return verify_signature(raw_body, signature, self._secret)

    def require_valid(self, raw_body: bytes, signature: str | None) -> None:
        """Raise unless the signature matches.

        Raises:
            InvalidSignature: If the signature is missing or wrong
        """
        if not signature:
            logger.warning("webhook_signature_missing", provider=self.provider)
            raise InvalidSignature(self.provider, "missing signature")
        if not self.verify(raw_body, signature):
            logger.warning("webhook_signature_invalid", provider=self.provider)
            raise InvalidSignature(self.provider, "invalid signature")


def generate_smile_id_signature(timestamp: str, partner_id: str, api_key: str) -> str:
    """Generate the base64 HMAC-SHA256 signature Smile ID expects.

    The message is timestamp, partner id and signature type, in that order.
    """
    mac = hmac.new(api_key.encode("utf-8"), digestmod=hashlib.sha256)
    mac.update(timestamp.encode("utf-8"))
    mac.update(partner_id.encode("utf-8"))
    mac.update(SMILE_ID_SIGNATURE_TYPE.encode("utf-8"))
    return base64.b64encode(mac.digest()).decode("ascii")


def verify_smile_id_signature(
    signature: str | None,
    timestamp: str | None,
    partner_id: str | None,
    api_key: str | None,
) -> bool:
    """Verify a Smile ID callback signature. Fails closed without a key."""
    if not signature or not timestamp or not partner_id or not api_key:
        return False
    if not signature.isascii():
        return False

    expected = generate_smile_id_signature(timestamp, partner_id, api_key)
    return hmac.compare_digest(expected, signature)


def is_timestamp_fresh(
    timestamp: str | None,
    max_age_minutes: int = 5,
    now: datetime | None = None,
) -> bool:
    """Check that an ISO 8601 timestamp is not in the future or too old."""
    if not timestamp:
        return False

    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return False

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    age_minutes = (now - parsed).total_seconds() / 60
    return 0 <= age_minutes <= max_age_minutes
