"""Initial database schema

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates:
- counters: one row per referral code shard, seeded at 0
- influencer_profiles: referral code owners (unique custom_code)
- referrals: one claim per referred user
- offramp_transactions, kyc_reviews, processed_webhook_events: webhook state
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SHARDS = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"


def upgrade() -> None:
    """Create all initial tables."""

    # Shard counters
    counters = op.create_table(
        "counters",
        sa.Column("shard", sa.String(1), nullable=False),
        sa.Column("next_val", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("shard"),
    )
    op.bulk_insert(counters, [{"shard": shard, "next_val": 0} for shard in SHARDS])

    # Influencer profiles
    op.create_table(
        "influencer_profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("custom_code", sa.String(8), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("total_referrals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_influencer_profiles_user_id", "influencer_profiles", ["user_id"], unique=True)
    op.create_index("ix_influencer_profiles_custom_code", "influencer_profiles", ["custom_code"], unique=True)

    # Referral claims
    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("influencer_code", sa.String(8), nullable=False),
        sa.Column("influencer_name", sa.String(255), nullable=True),
        sa.Column("bonus_snapshot", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_referrals_user_id", "referrals", ["user_id"], unique=True)
    op.create_index("ix_referrals_influencer_code", "referrals", ["influencer_code"], unique=False)

    # Paycrest payment orders
    op.create_table(
        "offramp_transactions",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("merchant_id", sa.String(128), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_offramp_transactions_merchant_id", "offramp_transactions", ["merchant_id"], unique=False)

    # KYC review outcomes (Sumsub, Smile ID)
    op.create_table(
        "kyc_reviews",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("external_user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False, server_default="sumsub"),
        sa.Column("applicant_id", sa.String(128), nullable=False),
        sa.Column("review_answer", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("reject_labels", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_kyc_reviews_external_user_id", "kyc_reviews", ["external_user_id"], unique=True)

    # Webhook idempotency
    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source", "event_id", name="uq_webhook_source_event"),
    )
    op.create_index("ix_processed_webhook_events_event_id", "processed_webhook_events", ["event_id"], unique=False)


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("processed_webhook_events")
    op.drop_table("kyc_reviews")
    op.drop_table("offramp_transactions")
    op.drop_table("referrals")
    op.drop_table("influencer_profiles")
    op.drop_table("counters")
