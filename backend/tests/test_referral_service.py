import pytest

from nedapay.exceptions import CollisionRejected, InvalidReferralCode, StorageUnavailable
from nedapay.referral import service as service_module
from nedapay.referral.codes import build_code, is_valid_code
from nedapay.referral.counters import InMemoryCounterStore
from nedapay.referral.models import InfluencerProfile
from nedapay.referral.service import ReferralService, invite_link
from nedapay.webhooks.models import OffRampTransaction


class _FailingStore:
    def increment(self, shard):
        raise StorageUnavailable(shard, "down")


def _scripted_codes(monkeypatch, codes):
    issued = []
    remaining = iter(codes)

    def fake_generate(store):
        code = next(remaining)
        issued.append(code)
        return code

    monkeypatch.setattr(service_module, "generate_code", fake_generate)
    return issued


def _insert_profile(database, user_id, code, is_active=True):
    with database.session() as session:
        session.add(InfluencerProfile(
            user_id=user_id,
            display_name=f"Influencer {user_id}",
            custom_code=code,
            is_active=is_active,
        ))


class TestAssignCode:

    def test_creates_profile_with_valid_code(self, referral_service):
        profile = referral_service.assign_code("did:privy:alice", display_name="Alice")

        assert profile.user_id == "did:privy:alice"
        assert profile.display_name == "Alice"
        assert is_valid_code(profile.custom_code)

    def test_default_display_name(self, referral_service):
        profile = referral_service.assign_code("did:privy:bob")
        assert profile.display_name == "User-did:pr"

    def test_is_idempotent(self, referral_service):
        first = referral_service.assign_code("user-1")
        second = referral_service.assign_code("user-1")
        assert first.custom_code == second.custom_code
        assert first.id == second.id

    def test_codes_differ_between_users(self, referral_service):
        codes = {referral_service.assign_code(f"user-{i}").custom_code for i in range(50)}
        assert len(codes) == 50

    def test_collision_is_retried(self, database, monkeypatch):
        taken = build_code("A", 1)
        fresh = build_code("A", 2)
        _insert_profile(database, "existing", taken)
        issued = _scripted_codes(monkeypatch, [taken, fresh])

        profile = ReferralService(database).assign_code("newcomer")

        assert profile.custom_code == fresh
        assert issued == [taken, fresh]

    def test_gives_up_after_max_attempts(self, database, monkeypatch):
        taken = build_code("A", 1)
        _insert_profile(database, "existing", taken)
        issued = _scripted_codes(monkeypatch, [taken] * 10)

        with pytest.raises(CollisionRejected) as exc_info:
            ReferralService(database, max_attempts=3).assign_code("newcomer")

        assert exc_info.value.code == taken
        assert len(issued) == 3

        # Profile exists but holds no code
        profile = ReferralService(database).get_profile("newcomer")
        assert profile.custom_code is None

    def test_storage_failure_is_not_retried(self, database):
        service = ReferralService(database, counter_store=_FailingStore())
        with pytest.raises(StorageUnavailable):
            service.assign_code("user-1")

    def test_injected_counter_store(self, database):
        store = InMemoryCounterStore()
        profile = ReferralService(database, counter_store=store).assign_code("user-1")
        assert store.peek(profile.custom_code[0]) == 1


class TestValidateAndClaim:

    def test_validate_code(self, referral_service):
        code = referral_service.assign_code("influencer").custom_code

        assert referral_service.validate_code(code).user_id == "influencer"
        assert referral_service.validate_code(f"  {code.lower()} ").user_id == "influencer"
        assert referral_service.validate_code(build_code("B", 99)) is None
        assert referral_service.validate_code("") is None

    def test_inactive_profile_is_invalid(self, database, referral_service):
        code = build_code("C", 5)
        _insert_profile(database, "inactive", code, is_active=False)
        assert referral_service.validate_code(code) is None

    def test_claim_records_referral(self, referral_service):
        code = referral_service.assign_code("influencer", display_name="Neda").custom_code

        referral, created = referral_service.claim("referred-1", code, bonus=5.0)

        assert created
        assert referral.influencer_code == code
        assert referral.influencer_name == "Neda"
        assert referral.bonus_snapshot == 5.0
        assert referral_service.get_profile("influencer").total_referrals == 1

    def test_claim_is_idempotent(self, referral_service):
        code = referral_service.assign_code("influencer").custom_code
        other = referral_service.assign_code("other").custom_code

        first, created_first = referral_service.claim("referred-1", code)
        second, created_second = referral_service.claim("referred-1", other)

        assert created_first and not created_second
        assert second.id == first.id
        assert second.influencer_code == code
        assert referral_service.get_profile("influencer").total_referrals == 1
        assert referral_service.get_profile("other").total_referrals == 0

    def test_claim_with_bad_checksum(self, referral_service):
        code = referral_service.assign_code("influencer").custom_code
        corrupted = code[:-1] + ("2" if code[-1] != "2" else "3")

        with pytest.raises(InvalidReferralCode):
            referral_service.claim("referred-1", corrupted)

    def test_claim_unknown_code(self, referral_service):
        with pytest.raises(InvalidReferralCode):
            referral_service.claim("referred-1", build_code("D", 42))


class TestStats:

    def test_unknown_user(self, referral_service):
        assert referral_service.get_stats("nobody") is None

    def test_inactive_user(self, database, referral_service):
        _insert_profile(database, "inactive", build_code("E", 1), is_active=False)
        assert referral_service.get_stats("inactive") is None

    def test_profile_without_code_gets_one(self, database, referral_service):
        _insert_profile(database, "no-code", None)
        stats = referral_service.get_stats("no-code")
        assert is_valid_code(stats["code"])

    def test_lists_invitees(self, referral_service):
        code = referral_service.assign_code("influencer").custom_code
        referral_service.claim("referred-1", code)
        referral_service.claim("referred-2", code)

        stats = referral_service.get_stats("influencer")

        assert stats["code"] == code
        assert stats["invite_link"] == invite_link(code)
        assert stats["invite_link"].endswith(f"/invite/{code}")
        assert stats["total_referrals"] == 2
        assert {i["user_id"] for i in stats["invitees"]} == {"referred-1", "referred-2"}


def _add_offramp(database, order_id, wallet, status, amount=100.0, rate=2.0, currency="KES"):
    with database.session() as session:
        session.add(OffRampTransaction(
            id=order_id,
            merchant_id=wallet,
            status=status,
            amount=amount,
            rate=rate,
            currency=currency,
        ))


class TestAnalytics:

    def test_joins_invitees_to_offramps(self, database, referral_service):
        code = referral_service.assign_code("influencer").custom_code
        referral_service.claim("alice", code, wallet="0xalice")
        referral_service.claim("bob", code)
        _add_offramp(database, "o1", "0xalice", "pending", amount=10.0)
        _add_offramp(database, "o2", "0xalice", "settled", amount=50.0, rate=3.0)
        _add_offramp(database, "o3", "0xstranger", "settled")

        analytics = referral_service.get_analytics(code.lower())

        assert analytics["influencer"]["code"] == code
        rows = {row["user_id"]: row for row in analytics["referrals"]}
        assert [t["id"] for t in rows["alice"]["transactions"]] == ["o1", "o2"]
        assert rows["alice"]["first_settled"]["amount"] == 150.0
        assert rows["alice"]["earning"] == {"amount": 15.0, "currency": "KES", "source_tx_id": "o2"}
        assert rows["bob"]["transactions"] == []
        assert rows["bob"]["earning"] is None

        totals = analytics["totals"]
        assert totals["referrals"] == 2
        assert totals["total_tx"] == 2
        assert totals["volume_by_currency"] == [{"currency": "KES", "total": 170.0}]
        assert totals["earnings_by_currency"] == [{"currency": "KES", "total": 15.0}]

    def test_only_first_settled_earns(self, database, referral_service):
        code = referral_service.assign_code("influencer").custom_code
        referral_service.claim("alice", code, wallet="0xalice")
        _add_offramp(database, "o1", "0xalice", "settled", amount=10.0, rate=1.0)
        _add_offramp(database, "o2", "0xalice", "settled", amount=1000.0, rate=1.0)

        analytics = referral_service.get_analytics(code)

        assert analytics["totals"]["earnings_by_currency"] == [{"currency": "KES", "total": 1.0}]

    def test_unknown_code(self, referral_service):
        assert referral_service.get_analytics(build_code("A", 1)) is None

    def test_influencer_analytics_requires_code(self, referral_service):
        assert referral_service.get_influencer_analytics("nobody") is None

        code = referral_service.assign_code("influencer").custom_code
        assert referral_service.get_influencer_analytics("influencer")["influencer"]["code"] == code

    def test_platform_rollup(self, database, referral_service):
        first = referral_service.assign_code("inf-1").custom_code
        second = referral_service.assign_code("inf-2").custom_code
        referral_service.claim("alice", first, wallet="0xalice")
        referral_service.claim("bob", first, wallet="0xbob")
        referral_service.claim("carol", second, wallet="0xcarol")
        _add_offramp(database, "o1", "0xalice", "settled", currency="KES")
        _add_offramp(database, "o2", "0xbob", "pending", currency="NGN")
        _add_offramp(database, "o3", "0xnobody", "settled")

        rollup = referral_service.get_all_analytics()

        rows = {row["code"]: row for row in rollup["rows"]}
        assert rows[first]["referrals"] == 2
        assert rows[first]["offramp_tx"] == 2
        assert rows[first]["volume_by_currency"] == [
            {"currency": "KES", "total": 200.0},
            {"currency": "NGN", "total": 200.0},
        ]
        assert rows[second]["offramp_tx"] == 0
        assert rollup["totals"] == {
            "influencers": 2,
            "total_referrals": 3,
            "offramp_tx_count": 2,
            "volume_by_currency": [
                {"currency": "KES", "total": 200.0},
                {"currency": "NGN", "total": 200.0},
            ],
        }
