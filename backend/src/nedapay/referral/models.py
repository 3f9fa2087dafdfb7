"""Referral system database models."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from nedapay.storage.models import Base


class Counter(Base):
    """Per-shard sequence used to build referral codes.

    One row per alphabet symbol. Rows are only ever incremented in place so
    the database row lock serializes concurrent generators.
    """

    __tablename__ = "counters"

    shard: Mapped[str] = mapped_column(String(1), primary_key=True)
    next_val: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Counter(shard={self.shard}, next_val={self.next_val})>"


class InfluencerProfile(Base):
    """A user who can share a referral code.

    The unique index on custom_code is what rejects colliding codes.
    """

    __tablename__ = "influencer_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    custom_code: Mapped[str | None] = mapped_column(String(8), unique=True, nullable=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    total_referrals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<InfluencerProfile(user_id={self.user_id}, code={self.custom_code})>"


class Referral(Base):
    """A referred user and the code they signed up with."""

    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    influencer_code: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    influencer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bonus_snapshot: Mapped[float | None] = mapped_column(Float, nullable=True)
    wallet: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)  # matches offramp merchant_id

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Referral(user_id={self.user_id}, code={self.influencer_code})>"
