"""
Pydantic models for the Clipper Payout Platform.

Models:
  - Caller: who is calling a service operation (resolved by the HTTP layer)
  - PayoutSettings / TierSettings: typed views of the two settings blobs
  - TweetData / TagCompliance: metrics fetched from twitterapi.io
  - ClipPayout / ClipperPayoutDraft: in-memory payout math results
  - *Result models: what each service operation returns. Business-rule
    failures come back as success=False + error, never as exceptions.
  - *Request models: API request bodies
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID


# ---------------------------------------------------------------------------
# Caller: identity + admin flag; authentication itself lives outside the core
# ---------------------------------------------------------------------------
class Caller(BaseModel):
    user_id: Optional[UUID] = None
    is_admin: bool = False


# ---------------------------------------------------------------------------
# Settings: stored as JSON under the "payout_settings" / "tier_settings" keys
# ---------------------------------------------------------------------------
class PayoutSettings(BaseModel):
    min_views_for_payout: int = 1_000
    bonus_threshold_views: int = 100_000
    bonus_multiplier: Decimal = Decimal("1.5")


class TierSettings(BaseModel):
    # $ per 1,000 views
    entry_rate: Decimal = Decimal("1.00")
    approved_rate: Decimal = Decimal("1.50")
    core_rate: Decimal = Decimal("2.00")

    def rate_for(self, tier: Optional[str]) -> Decimal:
        if tier == "core":
            return self.core_rate
        if tier == "approved":
            return self.approved_rate
        return self.entry_rate


class PayoutSettingsUpdate(BaseModel):
    minimum_views_for_payout: int = Field(ge=0)
    bonus_threshold_views: int = Field(ge=0)
    bonus_multiplier: float = Field(ge=1)


class TierSettingsUpdate(BaseModel):
    entry_pay_rate: Optional[float] = Field(default=None, ge=0)
    approved_pay_rate: Optional[float] = Field(default=None, ge=0)
    core_pay_rate: Optional[float] = Field(default=None, ge=0)
    entry_benefits: Optional[str] = None
    approved_benefits: Optional[str] = None
    core_benefits: Optional[str] = None


# ---------------------------------------------------------------------------
# External metrics (twitterapi.io)
# ---------------------------------------------------------------------------
class TweetEntities(BaseModel):
    hashtags: list[str] = []
    mentions: list[str] = []
    urls: list[str] = []


class TweetData(BaseModel):
    id: str
    text: str = ""
    author_username: str = ""
    views: int = 0
    likes: int = 0
    retweets: int = 0
    replies: int = 0
    impressions: int = 0
    created_at: Optional[datetime] = None
    entities: TweetEntities = Field(default_factory=TweetEntities)


class TagCompliance(BaseModel):
    compliant: bool
    found: list[str] = []
    missing: list[str] = []


# ---------------------------------------------------------------------------
# Payout math
#
# base   = floor(views / 1000) * rate   (or the campaign's flat core-tier rate)
# bonus  = base * (multiplier - 1)      when views >= bonus threshold
# amount = base + bonus                 each part rounded to cents first
# ---------------------------------------------------------------------------
class ClipPayout(BaseModel):
    clip_id: Optional[UUID] = None
    views: int = 0
    qualified: bool = False
    rate: Decimal = Decimal("0")
    base: Decimal = Decimal("0.00")
    bonus: Decimal = Decimal("0.00")
    amount: Decimal = Decimal("0.00")


class ClipperPayoutDraft(BaseModel):
    clipper_id: UUID
    tier: str = "entry"
    total_views: int = 0
    clips_count: int = 0          # every clip in the group, qualified or not
    amount: Decimal = Decimal("0.00")
    bonus_amount: Decimal = Decimal("0.00")
    clip_payouts: list[ClipPayout] = []

    # A qualified clip that comes out at $0.00 is not paid and stays approved
    @property
    def paid_clips(self) -> list[ClipPayout]:
        return [c for c in self.clip_payouts if c.qualified and c.amount > 0]


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------
class ActionResult(BaseModel):
    success: bool = False
    error: Optional[str] = None


class GenerateBatchResult(ActionResult):
    batch_id: Optional[UUID] = None
    total_amount: Decimal = Decimal("0.00")
    total_clips: int = 0


class MarkPaidResult(ActionResult):
    payouts_marked: int = 0
    amount_credited: Decimal = Decimal("0.00")


class DuplicateScanResult(ActionResult):
    duplicates_found: int = 0


class DuplicateCheckResult(BaseModel):
    is_duplicate: bool = False
    clip_id: Optional[UUID] = None
    clipper_name: Optional[str] = None
    submitted_at: Optional[datetime] = None


class RefreshResult(BaseModel):
    total: int = 0
    updated: int = 0
    errors: int = 0
    timestamp: Optional[datetime] = None


class SubmitClipResult(ActionResult):
    clip_id: Optional[UUID] = None
    is_duplicate: bool = False
    existing_clip_id: Optional[UUID] = None


class ClipMetricsResult(ActionResult):
    views: int = 0


# ---------------------------------------------------------------------------
# API request models
# ---------------------------------------------------------------------------
class GenerateBatchRequest(BaseModel):
    period_start: date
    period_end: date


class SubmitClipRequest(BaseModel):
    campaign_id: UUID
    platform_post_url: str


class RejectClipRequest(BaseModel):
    reason: str
