"""Database models written by webhook handlers."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from nedapay.storage.models import Base


class OffRampTransaction(Base):
    """Paycrest payment order status, keyed by the order id."""

    __tablename__ = "offramp_transactions"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    merchant_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # pending, settled, expired, refunded
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)  # token amount
    rate: Mapped[float | None] = mapped_column(Float, nullable=True)  # fiat per token
    currency: Mapped[str | None] = mapped_column(String(10), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<OffRampTransaction(id={self.id}, status={self.status})>"


class KycReview(Base):
    """Latest KYC review outcome for a user, from Sumsub or Smile ID."""

    __tablename__ = "kyc_reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_user_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default="sumsub")  # sumsub, smile_id
    applicant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    review_answer: Mapped[str] = mapped_column(String(10), nullable=False)  # GREEN/RED/YELLOW or Smile ID result code
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    reject_labels: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<KycReview(user={self.external_user_id}, status={self.status})>"


class ProcessedWebhookEvent(Base):
    """Tracks processed webhook events for idempotency.

    Stored in the database to survive restarts and work across processes.
    """

    __tablename__ = "processed_webhook_events"
    __table_args__ = (UniqueConstraint("source", "event_id", name="uq_webhook_source_event"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)  # paycrest, sumsub, smile_id
    processed_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent(id={self.event_id}, type={self.event_type})>"
