"""Processing of verified provider webhook payloads."""

import math
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from nedapay.logging_config import get_logger
from nedapay.storage.db import Database
from nedapay.webhooks.models import KycReview, OffRampTransaction, ProcessedWebhookEvent

logger = get_logger(__name__)

PAYCREST_EVENT_STATUSES = {
    "payment_order.pending": "pending",
    "payment_order.settled": "settled",
    "payment_order.expired": "expired",
    "payment_order.refunded": "refunded",
}

SUMSUB_REVIEWED = "applicantReviewed"


class MalformedPayload(ValueError):
    """A verified webhook body lacks fields the handler needs."""


# ==================== IDEMPOTENCY ====================


def is_event_processed(database: Database, event_id: str, source: str) -> bool:
    """Check if a webhook event has already been processed.

    Args:
        database: Database to query
        event_id: The unique event ID from the webhook source
        source: The webhook source (e.g., "paycrest")

    Returns:
        True if already processed, False otherwise
    """
    with database.session() as session:
        existing = session.execute(
            select(ProcessedWebhookEvent.id).where(
                ProcessedWebhookEvent.event_id == event_id,
                ProcessedWebhookEvent.source == source,
            )
        ).first()
        return existing is not None


def mark_event_processed(database: Database, event_id: str, event_type: str, source: str) -> bool:
    """Mark a webhook event as processed.

    Returns:
        False if another worker recorded the same event first
    """
    try:
        with database.session() as session:
            session.add(ProcessedWebhookEvent(
                event_id=event_id,
                event_type=event_type,
                source=source,
            ))
    except IntegrityError:
        logger.info("webhook_event_already_marked", event_id=event_id, source=source)
        return False
    return True


def cleanup_old_events(database: Database, days: int = 30) -> int:
    """Remove webhook idempotency records older than ``days``.

    Returns:
        Number of deleted events
    """
    cutoff = datetime.utcnow() - timedelta(days=days)
    with database.session() as session:
        result = session.execute(
            delete(ProcessedWebhookEvent).where(ProcessedWebhookEvent.processed_at < cutoff)
        )
        deleted = result.rowcount

    logger.info("webhook_events_cleaned", deleted=deleted, days=days)
    return deleted


# ==================== PAYCREST ====================


def _paycrest_data(payload: dict[str, Any]) -> dict[str, Any]:
    data = payload.get("data")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedPayload("Paycrest event data must be an object")
    return data


def _to_number(value: Any) -> float | None:
    """Parse a Paycrest numeric field, which may arrive as a string."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def paycrest_event_id(payload: dict[str, Any]) -> str | None:
    """Idempotency key for a Paycrest event: order id plus event name.

    Raises:
        MalformedPayload: If ``data`` is present but not an object
    """
    order_id = _paycrest_data(payload).get("id")
    event = payload.get("event")
    if not order_id or not event:
        return None
    return f"{order_id}:{event}"


def handle_paycrest_event(database: Database, payload: dict[str, Any]) -> str | None:
    """Apply a Paycrest payment order event to its transaction record.

    ``payment_order.pending`` only creates the record; a late pending
    delivery never overwrites a status that has already moved on.

    Args:
        database: Database holding offramp transactions
        payload: Parsed webhook body with ``event`` and ``data``

    Returns:
        Stored transaction status, or None for events that are not tracked

    Raises:
        MalformedPayload: If a tracked event carries no order id
    """
    event = payload.get("event")
    status = PAYCREST_EVENT_STATUSES.get(event)
    if status is None:
        logger.info("paycrest_event_unhandled", paycrest_event=event)
        return None

    data = _paycrest_data(payload)
    order_id = data.get("id")
    if not order_id:
        raise MalformedPayload("Paycrest event without data.id")

    recipient = data.get("recipient")
    fields = {
        "merchant_id": data.get("fromAddress"),
        "amount": _to_number(data.get("amount")),
        "rate": _to_number(data.get("rate")),
        "currency": data.get("currency") or (recipient.get("currency") if isinstance(recipient, dict) else None),
    }

    with database.session() as session:
        transaction = session.get(OffRampTransaction, str(order_id))
        if transaction is None:
            session.add(OffRampTransaction(id=str(order_id), status=status, **fields))
        elif status == "pending":
            logger.info("paycrest_pending_ignored", order_id=order_id, status=transaction.status)
            return transaction.status
        else:
            transaction.status = status
            for name, value in fields.items():
                if value is not None:
                    setattr(transaction, name, value)

    logger.info("paycrest_order_updated", order_id=order_id, status=status)
    return status


# ==================== KYC ====================


def _record_kyc_review(
    database: Database,
    provider: str,
    external_user_id: str,
    applicant_id: str,
    answer: str,
    status: str,
    labels: list[str] | None = None,
) -> None:
    with database.session() as session:
        record = session.execute(
            select(KycReview).where(KycReview.external_user_id == external_user_id)
        ).scalar_one_or_none()
        if record is None:
            record = KycReview(external_user_id=external_user_id)
            session.add(record)

        record.provider = provider
        record.applicant_id = applicant_id
        record.review_answer = answer
        record.status = status
        record.reject_labels = ", ".join(labels or []) or None


# ==================== SUMSUB ====================


def kyc_status_for(review_answer: str, reject_type: str | None) -> str:
    """Map a Sumsub review answer to the stored KYC status."""
    if review_answer == "GREEN":
        return "approved"
    if review_answer == "RED":
        return "rejected_retry" if reject_type == "RETRY" else "rejected_final"
    if review_answer == "YELLOW":
        return "pending"
    raise MalformedPayload(f"Unknown review answer: {review_answer}")


def handle_sumsub_event(database: Database, payload: dict[str, Any]) -> str | None:
    """Record the outcome of a Sumsub ``applicantReviewed`` event.

    Returns:
        Stored KYC status, or None for other event types

    Raises:
        MalformedPayload: If required fields are missing
    """
    if payload.get("type") != SUMSUB_REVIEWED:
        logger.info("sumsub_event_ignored", sumsub_type=payload.get("type"))
        return None

    try:
        applicant_id = payload["applicantId"]
        external_user_id = payload["externalUserId"]
        review = payload["reviewResult"]
        answer = review["reviewAnswer"]
    except (KeyError, TypeError) as e:
        raise MalformedPayload(f"Sumsub payload missing field: {e}") from e

    status = kyc_status_for(answer, review.get("reviewRejectType"))
    _record_kyc_review(
        database,
        provider="sumsub",
        external_user_id=external_user_id,
        applicant_id=applicant_id,
        answer=answer,
        status=status,
        labels=review.get("rejectLabels"),
    )

    logger.info(
        "sumsub_review_recorded",
        applicant_id=applicant_id,
        external_user_id=external_user_id,
        status=status,
    )
    return status


# ==================== SMILE ID ====================

SMILE_ID_SUCCESS_CODES = frozenset({
    "0810",  # Document Verified
    "1020",  # Exact Match
    "1012",  # ID Number Validated
    "0820",  # Authenticate User PASS
    "0840",  # Enroll User PASS
})

SMILE_ID_FAILED_CODES = frozenset({
    "0811", "0812", "0813", "0821", "0841",
    "0911", "0912", "0921", "0922", "0941", "0942",
    "1011", "1013", "1014", "1022", "1023",
})


def smile_id_status_for(result_code: str) -> str:
    """Map a Smile ID ResultCode to the stored KYC status."""
    if result_code in SMILE_ID_SUCCESS_CODES:
        return "approved"
    if result_code in SMILE_ID_FAILED_CODES:
        return "rejected_final"
    return "pending"


def smile_id_job_id(payload: dict[str, Any]) -> str | None:
    """Idempotency key for a Smile ID callback: the job id from PartnerParams."""
    partner_params = payload.get("PartnerParams")
    if not isinstance(partner_params, dict) or not partner_params.get("job_id"):
        return None
    return str(partner_params["job_id"])


def handle_smile_id_event(database: Database, payload: dict[str, Any]) -> str:
    """Record the outcome of a verified Smile ID job callback.

    Returns:
        Stored KYC status

    Raises:
        MalformedPayload: If ResultCode or PartnerParams.user_id is missing
    """
    result_code = payload.get("ResultCode")
    partner_params = payload.get("PartnerParams") or {}
    user_id = partner_params.get("user_id") if isinstance(partner_params, dict) else None

    if not result_code:
        raise MalformedPayload("Missing ResultCode in payload")
    if not user_id:
        raise MalformedPayload("Missing user_id in PartnerParams")

    status = smile_id_status_for(str(result_code))
    result_text = payload.get("ResultText")
    _record_kyc_review(
        database,
        provider="smile_id",
        external_user_id=str(user_id),
        applicant_id=str(partner_params.get("job_id") or ""),
        answer=str(result_code),
        status=status,
        labels=[result_text] if result_text and status != "approved" else None,
    )

    logger.info(
        "smile_id_result_recorded",
        external_user_id=user_id,
        result_code=result_code,
        status=status,
    )
    return status
