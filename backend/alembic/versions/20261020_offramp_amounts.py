"""Off-ramp amounts and referral wallets

Revision ID: 002_offramp_amounts
Revises: 001_initial
Create Date: 2026-10-20

Adds:
- offramp_transactions.amount, rate, currency: filled from Paycrest order data
- referrals.wallet: joins referred users to their off-ramp transactions
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "002_offramp_amounts"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("offramp_transactions") as batch_op:
        batch_op.add_column(sa.Column("amount", sa.Float(), nullable=True))
        batch_op.add_column(sa.Column("rate", sa.Float(), nullable=True))
        batch_op.add_column(sa.Column("currency", sa.String(10), nullable=True))

    with op.batch_alter_table("referrals") as batch_op:
        batch_op.add_column(sa.Column("wallet", sa.String(128), nullable=True))
    op.create_index("ix_referrals_wallet", "referrals", ["wallet"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_referrals_wallet", table_name="referrals")
    with op.batch_alter_table("referrals") as batch_op:
        batch_op.drop_column("wallet")

    with op.batch_alter_table("offramp_transactions") as batch_op:
        batch_op.drop_column("currency")
        batch_op.drop_column("rate")
        batch_op.drop_column("amount")
