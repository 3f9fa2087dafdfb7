"""Referral API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from nedapay.api.dependencies import get_referral_service, require_admin, require_user_id
from nedapay.api.rate_limit import limiter
from nedapay.logging_config import get_logger
from nedapay.referral.service import ReferralService, invite_link

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class InviteeResponse(BaseModel):
    """A user who signed up with the code."""
    id: int
    user_id: str
    created_at: str


class ReferralCodeResponse(BaseModel):
    """Response with an influencer's referral code."""
    code: str
    invite_link: str
    total_referrals: int = 0
    invitees: list[InviteeResponse] = Field(default_factory=list)


class CreateCodeRequest(BaseModel):
    """Optional profile details when creating a code."""
    display_name: str | None = Field(default=None, max_length=255)


class ValidateCodeRequest(BaseModel):
    """Request to validate a referral code."""
    code: str = Field(max_length=32)


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    influencer_name: str | None = None


class ClaimRequest(BaseModel):
    """Request to claim a referral code at signup."""
    code: str = Field(max_length=32)
    influencer_name: str | None = Field(default=None, max_length=255)
    bonus: float | None = None
    wallet: str | None = Field(default=None, max_length=128)


class ClaimResponse(BaseModel):
    """Result of a referral claim."""
    ok: bool = True
    created: bool


class CurrencyTotal(BaseModel):
    currency: str
    total: float


class TransactionSummary(BaseModel):
    """An off-ramp by a referred user, in fiat."""
    id: str
    amount: float
    currency: str
    status: str
    created_at: str


class Earning(BaseModel):
    amount: float
    currency: str
    source_tx_id: str


class ReferralAnalyticsRow(BaseModel):
    referral_id: int
    user_id: str
    wallet: str | None = None
    created_at: str
    transactions: list[TransactionSummary]
    first_settled: TransactionSummary | None = None
    earning: Earning | None = None


class InfluencerSummary(BaseModel):
    code: str
    display_name: str
    is_active: bool


class AnalyticsTotals(BaseModel):
    referrals: int
    total_tx: int
    earnings_by_currency: list[CurrencyTotal]
    volume_by_currency: list[CurrencyTotal]


class CodeAnalyticsResponse(BaseModel):
    """Referrals and their off-ramp activity for one code."""
    influencer: InfluencerSummary
    totals: AnalyticsTotals
    referrals: list[ReferralAnalyticsRow]


class InfluencerRollup(BaseModel):
    code: str
    display_name: str
    is_active: bool
    referrals: int
    offramp_tx: int
    volume_by_currency: list[CurrencyTotal]


class PlatformTotals(BaseModel):
    influencers: int
    total_referrals: int
    offramp_tx_count: int
    volume_by_currency: list[CurrencyTotal]


class PlatformAnalyticsResponse(BaseModel):
    """Per-influencer rollup across the platform."""
    rows: list[InfluencerRollup]
    totals: PlatformTotals


# ==================== ENDPOINTS ====================


@router.get("/code", response_model=ReferralCodeResponse)
async def get_referral_code(
    user_id: str = Depends(require_user_id),
    service: ReferralService = Depends(get_referral_service),
):
    """Get the caller's referral code and invitees.

    Generates the code on first access for an active influencer.
    """
    stats = service.get_stats(user_id)
    if stats is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not an active influencer",
        )

    return ReferralCodeResponse(**stats)


@router.post("/code", response_model=ReferralCodeResponse)
async def create_referral_code(
    body: CreateCodeRequest | None = None,
    user_id: str = Depends(require_user_id),
    service: ReferralService = Depends(get_referral_service),
):
    """Create an influencer profile and code for the caller.

    Idempotent: returns the existing code if there is one.
    """
    profile = service.assign_code(user_id, display_name=body.display_name if body else None)

    return ReferralCodeResponse(
        code=profile.custom_code,
        invite_link=invite_link(profile.custom_code),
        total_referrals=profile.total_referrals,
    )


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit("30/minute")
async def validate_referral_code(
    request: Request,
    body: ValidateCodeRequest,
    service: ReferralService = Depends(get_referral_service),
):
    """Validate a referral code.

    Used during registration to check the code and show the influencer's name.
    """
    profile = service.validate_code(body.code)

    if not profile:
        return ValidateCodeResponse(valid=False)

    return ValidateCodeResponse(valid=True, influencer_name=profile.display_name)


@router.post("/claim", response_model=ClaimResponse)
@limiter.limit("10/minute")
async def claim_referral_code(
    request: Request,
    body: ClaimRequest,
    user_id: str = Depends(require_user_id),
    service: ReferralService = Depends(get_referral_service),
):
    """Record the caller as referred by the given code."""
    _, created = service.claim(
        user_id=user_id,
        code=body.code,
        influencer_name=body.influencer_name,
        bonus=body.bonus,
        wallet=body.wallet,
    )

    return ClaimResponse(created=created)


@router.get("/analytics", response_model=CodeAnalyticsResponse)
async def get_my_analytics(
    user_id: str = Depends(require_user_id),
    service: ReferralService = Depends(get_referral_service),
):
    """Analytics for the caller's own referral code."""
    analytics = service.get_influencer_analytics(user_id)
    if analytics is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not an influencer",
        )

    return analytics


@router.get("/analytics/all", response_model=PlatformAnalyticsResponse, dependencies=[Depends(require_admin)])
async def get_all_analytics(
    service: ReferralService = Depends(get_referral_service),
):
    """Referral and off-ramp rollup for every influencer (admin only)."""
    return service.get_all_analytics()


@router.get("/analytics/{code}", response_model=CodeAnalyticsResponse, dependencies=[Depends(require_admin)])
async def get_code_analytics(
    code: str,
    service: ReferralService = Depends(get_referral_service),
):
    """Analytics for any referral code (admin only)."""
    analytics = service.get_analytics(code)
    if analytics is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Influencer not found",
        )

    return analytics
