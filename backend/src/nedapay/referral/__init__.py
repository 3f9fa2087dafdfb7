"""Referral code module for nedapay.

Influencers get a short checksummed code built from a sharded counter;
referred users claim it once at signup.
"""

from nedapay.referral.codes import ALPHABET, generate_code, is_valid_code
from nedapay.referral.counters import CounterStore, InMemoryCounterStore, SqlCounterStore
from nedapay.referral.models import Counter, InfluencerProfile, Referral
from nedapay.referral.service import ReferralService, referral_service

__all__ = [
    "ALPHABET",
    "Counter",
    "CounterStore",
    "InMemoryCounterStore",
    "InfluencerProfile",
    "Referral",
    "ReferralService",
    "SqlCounterStore",
    "generate_code",
    "is_valid_code",
    "referral_service",
]
