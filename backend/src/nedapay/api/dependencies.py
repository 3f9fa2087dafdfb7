"""Shared FastAPI dependencies."""

import hmac

from fastapi import Header, HTTPException, Request, status

from nedapay.exceptions import MissingSecret
from nedapay.referral.service import ReferralService
from nedapay.settings import settings
from nedapay.storage.db import Database
from nedapay.webhooks.signature import WebhookVerifier

PAYCREST_SIGNATURE_HEADER = "X-Paycrest-Signature"
SUMSUB_SIGNATURE_HEADER = "X-Signature"


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_referral_service(request: Request) -> ReferralService:
    return request.app.state.referral_service


def require_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identity of the caller, as forwarded by the auth gateway.

    Raises:
        HTTPException: 401 if the header is missing
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return x_user_id.strip()


def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    """Gate platform-wide analytics behind ADMIN_API_KEY.

    Raises:
        MissingSecret: If ADMIN_API_KEY is not configured
        HTTPException: 401 if the header does not match
    """
    if not settings.admin_api_key:
        raise MissingSecret("ADMIN_API_KEY")
    if not x_admin_key or not hmac.compare_digest(
        x_admin_key.encode("utf-8"), settings.admin_api_key.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def get_paycrest_verifier() -> WebhookVerifier:
    """Raises MissingSecret when PAYCREST_CLIENT_SECRET is unset."""
    return WebhookVerifier("paycrest", PAYCREST_SIGNATURE_HEADER, settings.paycrest_client_secret)


def get_sumsub_verifier() -> WebhookVerifier:
    """Raises MissingSecret when SUMSUB_WEBHOOK_SECRET is unset."""
    return WebhookVerifier("sumsub", SUMSUB_SIGNATURE_HEADER, settings.sumsub_webhook_secret)
