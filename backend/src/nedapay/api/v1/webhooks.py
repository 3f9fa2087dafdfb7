"""Webhook endpoints for payment and KYC providers.

Paycrest and Sumsub signatures are checked against the raw request body
before it is parsed.
"""

import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status

from nedapay.api.dependencies import get_database, get_paycrest_verifier, get_sumsub_verifier
from nedapay.exceptions import InvalidSignature, MissingSecret
from nedapay.logging_config import get_logger
from nedapay.settings import settings
from nedapay.storage.db import Database
from nedapay.webhooks.handlers import (
    SUMSUB_REVIEWED,
    MalformedPayload,
    handle_paycrest_event,
    handle_smile_id_event,
    handle_sumsub_event,
    is_event_processed,
    mark_event_processed,
    paycrest_event_id,
    smile_id_job_id,
)
from nedapay.webhooks.signature import WebhookVerifier, is_timestamp_fresh, verify_smile_id_signature

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _verified_json(request: Request, verifier: WebhookVerifier) -> dict:
    """Read the raw body, check its signature, then parse it."""
    raw_body = await request.body()
    verifier.require_valid(raw_body, request.headers.get(verifier.header))

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("webhook_invalid_json", provider=verifier.provider)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    return payload


@router.post("/paycrest")
async def paycrest_webhook(
    request: Request,
    verifier: WebhookVerifier = Depends(get_paycrest_verifier),
    database: Database = Depends(get_database),
):
    """Handle Paycrest payment order events."""
    payload = await _verified_json(request, verifier)

    try:
        event_id = paycrest_event_id(payload)
        if event_id and is_event_processed(database, event_id, "paycrest"):
            logger.info("paycrest_webhook_duplicate", event_id=event_id)
            return {"message": "Webhook received", "duplicate": True}

        handle_paycrest_event(database, payload)
    except MalformedPayload as e:
        logger.warning("paycrest_webhook_malformed", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if event_id:
        mark_event_processed(database, event_id, payload["event"], "paycrest")

    return {"message": "Webhook received"}


@router.post("/sumsub")
async def sumsub_webhook(
    request: Request,
    verifier: WebhookVerifier = Depends(get_sumsub_verifier),
    database: Database = Depends(get_database),
):
    """Handle Sumsub applicant review events."""
    payload = await _verified_json(request, verifier)

    if payload.get("type") != SUMSUB_REVIEWED:
        logger.info("sumsub_webhook_unhandled", sumsub_type=payload.get("type"))
        return {"message": "Webhook type not handled"}

    correlation_id = payload.get("correlationId")
    if correlation_id and is_event_processed(database, correlation_id, "sumsub"):
        logger.info("sumsub_webhook_duplicate", correlation_id=correlation_id)
        return {"message": "Webhook processed successfully", "correlationId": correlation_id}

    try:
        handle_sumsub_event(database, payload)
    except MalformedPayload as e:
        logger.warning("sumsub_webhook_malformed", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if correlation_id:
        mark_event_processed(database, correlation_id, SUMSUB_REVIEWED, "sumsub")

    return {"message": "Webhook processed successfully", "correlationId": correlation_id}


@router.get("/sumsub")
async def sumsub_webhook_status():
    """Endpoint liveness check for the Sumsub dashboard."""
    return {
        "message": "Sumsub webhook endpoint is active",
        "supportedEvents": [SUMSUB_REVIEWED],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/smile-id")
async def smile_id_webhook(
    request: Request,
    database: Database = Depends(get_database),
):
    """Handle Smile ID job results.

    Smile ID signs the timestamp rather than the body, and sends both inside
    the JSON payload.
    """
    if not settings.smile_id_partner_id or not settings.smile_id_api_key:
        raise MissingSecret("SMILE_ID_API_KEY")

    try:
        payload = json.loads(await request.body())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    timestamp = payload.get("timestamp")
    if not verify_smile_id_signature(
        payload.get("signature"),
        timestamp,
        settings.smile_id_partner_id,
        settings.smile_id_api_key,
    ):
        logger.warning("webhook_signature_invalid", provider="smile_id")
        raise InvalidSignature("smile_id")

    if not is_timestamp_fresh(timestamp, settings.smile_id_max_timestamp_age_minutes):
        logger.warning("smile_id_timestamp_stale", timestamp=timestamp)
        raise InvalidSignature("smile_id", "stale timestamp")

    job_id = smile_id_job_id(payload)
    if job_id and is_event_processed(database, job_id, "smile_id"):
        logger.info("smile_id_webhook_duplicate", job_id=job_id)
        return {"success": True, "message": "Webhook processed successfully", "duplicate": True}

    try:
        handle_smile_id_event(database, payload)
    except MalformedPayload as e:
        logger.warning("smile_id_webhook_malformed", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if job_id:
        mark_event_processed(database, job_id, str(payload.get("ResultCode")), "smile_id")

    return {"success": True, "message": "Webhook processed successfully"}
