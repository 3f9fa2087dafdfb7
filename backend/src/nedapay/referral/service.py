"""Referral service for issuing influencer codes and recording claims."""

from collections import defaultdict
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from nedapay.exceptions import CollisionRejected, InvalidReferralCode
from nedapay.logging_config import get_logger
from nedapay.referral.codes import generate_code, is_valid_code, normalize_code
from nedapay.referral.counters import CounterStore, SqlCounterStore
from nedapay.referral.models import InfluencerProfile, Referral
from nedapay.settings import settings
from nedapay.storage.db import Database, db
from nedapay.webhooks.models import OffRampTransaction


def invite_link(code: str) -> str:
    """Build the public invite URL for a referral code."""
    return f"{settings.public_host.rstrip('/')}/invite/{code}"


def _fiat_amount(transaction: OffRampTransaction) -> float:
    return (transaction.amount or 0.0) * (transaction.rate or 0.0)


def _by_currency(pairs: Iterable[tuple[str | None, float]]) -> list[dict[str, Any]]:
    """Sum amounts per currency, in first-seen order."""
    totals: dict[str, float] = defaultdict(float)
    for currency, amount in pairs:
        totals[currency or "UNK"] += amount
    return [{"currency": currency, "total": round(total, 8)} for currency, total in totals.items()]


def _transaction_row(transaction: OffRampTransaction) -> dict[str, Any]:
    return {
        "id": transaction.id,
        "amount": round(_fiat_amount(transaction), 8),
        "currency": transaction.currency or "UNK",
        "status": transaction.status,
        "created_at": transaction.created_at.isoformat(),
    }


class ReferralService:
    """Service for managing influencer referral codes and claims."""

    def __init__(
        self,
        database: Database | None = None,
        counter_store: CounterStore | None = None,
        max_attempts: int | None = None,
    ):
        """Initialize referral service.

        Args:
            database: Database holding profiles and referrals (defaults to global db)
            counter_store: Shard counters (defaults to the counters table)
            max_attempts: Code generations tried before giving up on collisions
        """
        self.database = database or db
        self.counter_store = counter_store or SqlCounterStore(self.database)
        self.max_attempts = max_attempts or settings.code_max_attempts
        self.earning_rate = settings.referral_earning_rate
        self.logger = get_logger(__name__)

    def get_profile(self, user_id: str) -> InfluencerProfile | None:
        """Load the influencer profile for a user, if any."""
        with self.database.session() as session:
            return session.execute(
                select(InfluencerProfile).where(InfluencerProfile.user_id == user_id)
            ).scalar_one_or_none()

    def _get_or_create_profile(self, user_id: str, display_name: str | None) -> InfluencerProfile:
        existing = self.get_profile(user_id)
        if existing:
            return existing

        try:
            with self.database.session() as session:
                profile = InfluencerProfile(
                    user_id=user_id,
                    display_name=display_name or f"User-{user_id[:6]}",
                    is_active=True,
                )
                session.add(profile)
                session.flush()
        except IntegrityError:
            # Created concurrently by another request
            profile = self.get_profile(user_id)
            if profile is None:
                raise

        return profile

    def _store_new_code(self, profile_id: int) -> InfluencerProfile:
        """Generate a code and persist it on the profile.

        Raises:
            CollisionRejected: If the unique index already holds the code
        """
        code = generate_code(self.counter_store)

        try:
            with self.database.session() as session:
                profile = session.get(InfluencerProfile, profile_id)
                if profile.custom_code:
                    return profile

                profile.custom_code = code
                session.flush()
        except IntegrityError as e:
            self.logger.warning("referral_code_collision", code=code, profile_id=profile_id)
            raise CollisionRejected(code) from e

        return profile

    def assign_code(self, user_id: str, display_name: str | None = None) -> InfluencerProfile:
        """Get the user's referral code, creating profile and code as needed.

        Collisions on the unique code index are retried with a freshly
        generated code, up to ``max_attempts`` times.

        Args:
            user_id: External identity of the user
            display_name: Name shown to referred users

        Returns:
            InfluencerProfile carrying a code

        Raises:
            CollisionRejected: If every attempt collided
            StorageUnavailable: If the counter store is down
            CounterExhausted: If the chosen shard has run out of values
        """
        profile = self._get_or_create_profile(user_id, display_name)
        if profile.custom_code:
            return profile

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception_type(CollisionRejected),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                profile = self._store_new_code(profile.id)

        self.logger.info(
            "referral_code_assigned",
            user_id=user_id,
            code=profile.custom_code,
        )
        return profile

    def validate_code(self, code: str | None) -> InfluencerProfile | None:
        """Resolve a code to its active influencer profile.

        Args:
            code: Referral code as typed by the user

        Returns:
            InfluencerProfile if the code is well-formed and active, None otherwise
        """
        code = normalize_code(code)
        if not is_valid_code(code):
            return None

        with self.database.session() as session:
            return session.execute(
                select(InfluencerProfile).where(
                    InfluencerProfile.custom_code == code,
                    InfluencerProfile.is_active.is_(True),
                )
            ).scalar_one_or_none()

    def claim(
        self,
        user_id: str,
        code: str,
        influencer_name: str | None = None,
        bonus: float | None = None,
        wallet: str | None = None,
    ) -> tuple[Referral, bool]:
        """Record that a user signed up with a referral code.

        Claims are idempotent per referred user: the first claim wins and
        later ones return the existing record untouched.
        The wallet links the referred user to their off-ramp transactions
        for analytics.

        Returns:
            (referral, created) where created is False for repeat claims

        Raises:
            InvalidReferralCode: If the code is malformed, unknown or inactive
        """
        profile = self.validate_code(code)
        if profile is None:
            raise InvalidReferralCode(normalize_code(code))

        try:
            with self.database.session() as session:
                existing = session.execute(
                    select(Referral).where(Referral.user_id == user_id)
                ).scalar_one_or_none()
                if existing:
                    return existing, False

                referral = Referral(
                    user_id=user_id,
                    influencer_code=profile.custom_code,
                    influencer_name=influencer_name or profile.display_name,
                    bonus_snapshot=bonus,
                    wallet=wallet,
                )
                session.add(referral)
                session.flush()

                session.execute(
                    update(InfluencerProfile)
                    .where(InfluencerProfile.id == profile.id)
                    .values(total_referrals=InfluencerProfile.total_referrals + 1)
                )
        except IntegrityError:
            # Concurrent claim by the same user
            with self.database.session() as session:
                existing = session.execute(
                    select(Referral).where(Referral.user_id == user_id)
                ).scalar_one()
            return existing, False

        self.logger.info(
            "referral_claimed",
            user_id=user_id,
            code=profile.custom_code,
        )
        return referral, True

    def get_stats(self, user_id: str) -> dict[str, Any] | None:
        """Get referral statistics for an influencer.

        Returns:
            Dict with code, invite link and invitees, or None if the user is
            not an active influencer
        """
        profile = self.get_profile(user_id)
        if profile is None or not profile.is_active:
            return None

        if not profile.custom_code:
            profile = self.assign_code(user_id)

        with self.database.session() as session:
            invitees = session.execute(
                select(Referral)
                .where(Referral.influencer_code == profile.custom_code)
                .order_by(Referral.created_at)
            ).scalars().all()

            return {
                "code": profile.custom_code,
                "invite_link": invite_link(profile.custom_code),
                "total_referrals": profile.total_referrals,
                "invitees": [
                    {
                        "id": referral.id,
                        "user_id": referral.user_id,
                        "created_at": referral.created_at.isoformat(),
                    }
                    for referral in invitees
                ],
            }

    # ==================== ANALYTICS ====================

    def _referral_row(self, referral: Referral, transactions: list[OffRampTransaction]) -> dict[str, Any]:
        settled = [t for t in transactions if (t.status or "").lower() == "settled"]
        first_settled = settled[0] if settled else None

        earning = None
        if first_settled is not None:
            earning = {
                "amount": round(self.earning_rate * _fiat_amount(first_settled), 8),
                "currency": first_settled.currency or "UNK",
                "source_tx_id": first_settled.id,
            }

        return {
            "referral_id": referral.id,
            "user_id": referral.user_id,
            "wallet": referral.wallet,
            "created_at": referral.created_at.isoformat(),
            "transactions": [_transaction_row(t) for t in transactions],
            "first_settled": _transaction_row(first_settled) if first_settled else None,
            "earning": earning,
        }

    def get_analytics(self, code: str) -> dict[str, Any] | None:
        """Referral analytics for one influencer code.

        Each referred user is joined to the off-ramp transactions whose
        merchant id is their wallet. Amounts are fiat (token amount times
        rate). The influencer earns ``earning_rate`` of each referred user's
        first settled off-ramp.

        Returns:
            Dict with influencer, totals and per-referral rows, or None if no
            influencer owns the code
        """
        code = normalize_code(code)

        with self.database.session() as session:
            profile = session.execute(
                select(InfluencerProfile).where(InfluencerProfile.custom_code == code)
            ).scalar_one_or_none()
            if profile is None:
                return None

            referrals = session.execute(
                select(Referral)
                .where(Referral.influencer_code == code)
                .order_by(Referral.created_at, Referral.id)
            ).scalars().all()

            wallets = {r.wallet for r in referrals if r.wallet}
            by_wallet: dict[str, list[OffRampTransaction]] = defaultdict(list)
            if wallets:
                transactions = session.execute(
                    select(OffRampTransaction)
                    .where(OffRampTransaction.merchant_id.in_(wallets))
                    .order_by(OffRampTransaction.created_at, OffRampTransaction.id)
                ).scalars().all()
                for transaction in transactions:
                    by_wallet[transaction.merchant_id].append(transaction)

            rows = [
                self._referral_row(referral, by_wallet.get(referral.wallet, []) if referral.wallet else [])
                for referral in referrals
            ]

            return {
                "influencer": {
                    "code": profile.custom_code,
                    "display_name": profile.display_name,
                    "is_active": profile.is_active,
                },
                "totals": {
                    "referrals": len(rows),
                    "total_tx": sum(len(row["transactions"]) for row in rows),
                    "earnings_by_currency": _by_currency(
                        (row["earning"]["currency"], row["earning"]["amount"])
                        for row in rows
                        if row["earning"]
                    ),
                    "volume_by_currency": _by_currency(
                        (tx["currency"], tx["amount"])
                        for row in rows
                        for tx in row["transactions"]
                    ),
                },
                "referrals": rows,
            }

    def get_influencer_analytics(self, user_id: str) -> dict[str, Any] | None:
        """Analytics for the caller's own code, or None if they have none."""
        profile = self.get_profile(user_id)
        if profile is None or not profile.custom_code:
            return None
        return self.get_analytics(profile.custom_code)

    def get_all_analytics(self) -> dict[str, Any]:
        """Platform-wide rollup: referrals and off-ramp volume per influencer.

        Off-ramp volume is attributed to the influencer whose code the
        transacting wallet signed up with.
        """
        with self.database.session() as session:
            profiles = session.execute(
                select(InfluencerProfile)
                .where(InfluencerProfile.custom_code.is_not(None))
                .order_by(InfluencerProfile.id)
            ).scalars().all()
            referrals = session.execute(select(Referral)).scalars().all()

            referral_counts: dict[str, int] = defaultdict(int)
            code_by_wallet: dict[str, str] = {}
            for referral in referrals:
                referral_counts[referral.influencer_code] += 1
                if referral.wallet:
                    code_by_wallet[referral.wallet] = referral.influencer_code

            transactions_by_code: dict[str, list[OffRampTransaction]] = defaultdict(list)
            if code_by_wallet:
                transactions = session.execute(
                    select(OffRampTransaction)
                    .where(OffRampTransaction.merchant_id.in_(code_by_wallet.keys()))
                    .order_by(OffRampTransaction.created_at, OffRampTransaction.id)
                ).scalars().all()
                for transaction in transactions:
                    transactions_by_code[code_by_wallet[transaction.merchant_id]].append(transaction)

            rows = []
            for profile in profiles:
                transactions = transactions_by_code.get(profile.custom_code, [])
                rows.append({
                    "code": profile.custom_code,
                    "display_name": profile.display_name,
                    "is_active": profile.is_active,
                    "referrals": referral_counts.get(profile.custom_code, 0),
                    "offramp_tx": len(transactions),
                    "volume_by_currency": _by_currency(
                        (t.currency, _fiat_amount(t)) for t in transactions
                    ),
                })

            attributed = [t for group in transactions_by_code.values() for t in group]
            return {
                "rows": rows,
                "totals": {
                    "influencers": len(profiles),
                    "total_referrals": sum(row["referrals"] for row in rows),
                    "offramp_tx_count": len(attributed),
                    "volume_by_currency": _by_currency(
                        (t.currency, _fiat_amount(t)) for t in attributed
                    ),
                },
            }


# Singleton instance
referral_service = ReferralService()
