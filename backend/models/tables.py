"""
SQLAlchemy ORM tables.

Tables:
  - users:             login identity + role (admin / clipper / client)
  - clipper_profiles:  tier, lifetime views/earnings, submission counters
  - campaigns:         per-tier rate overrides, per-clip and per-campaign caps, required tags
  - campaign_clipper_assignments: who may submit to a campaign, earned-in-campaign
  - clips:             one submitted post with its metrics, review status and payout
  - payout_batches:    one admin-triggered payout period
  - clipper_payouts:   one row per (batch, clipper)
  - platform_settings: key -> JSON blobs (payout_settings, tier_settings)

Money is Numeric(10, 2) and always handled as Decimal in Python.
Timestamps are naive UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(10, 2)

# ---------------------------------------------------------------------------
# Allowed values for the enumerated text columns
# ---------------------------------------------------------------------------
USER_ROLES = ("admin", "clipper", "client")
CLIPPER_TIERS = ("entry", "approved", "core")
CLIPPER_STATUSES = ("pending", "active", "suspended")
CAMPAIGN_STATUSES = ("draft", "active", "paused", "completed")
PLATFORMS = ("tiktok", "instagram", "youtube_shorts", "twitter")
CLIP_STATUSES = ("pending", "approved", "rejected", "paid")
BATCH_STATUSES = ("draft", "completed")
PAYOUT_STATUSES = ("pending", "paid")


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} in ({quoted})"


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(Text, unique=True)
    name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[str] = mapped_column(Text, default="clipper")
    twitter_handle: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    clipper_profile: Mapped["ClipperProfile | None"] = relationship(
        back_populates="user", uselist=False
    )

    __table_args__ = (CheckConstraint(_in("role", USER_ROLES), name="ck_users_role"),)


class ClipperProfile(Base):
    __tablename__ = "clipper_profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"))
    tier: Mapped[str] = mapped_column(Text, default="entry")
    telegram_handle: Mapped[str | None] = mapped_column(Text)
    total_views: Mapped[int] = mapped_column(BigInteger, default=0)
    total_earnings: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    clips_submitted: Mapped[int] = mapped_column(Integer, default=0)
    clips_approved: Mapped[int] = mapped_column(Integer, default=0)
    avg_views_per_clip: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(Text, default="pending")
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship(back_populates="clipper_profile")
    clips: Mapped[list["Clip"]] = relationship(back_populates="clipper")

    __table_args__ = (
        CheckConstraint(_in("tier", CLIPPER_TIERS), name="ck_clipper_profiles_tier"),
        CheckConstraint(_in("status", CLIPPER_STATUSES), name="ck_clipper_profiles_status"),
    )

    @property
    def display_name(self) -> str:
        if self.user is not None and self.user.name:
            return self.user.name
        return "Unknown"


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    client_name: Mapped[str | None] = mapped_column(Text)
    name: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, default="draft")
    # entry tier: $ per 1,000 views
    tier1_cpm_rate: Mapped[Decimal | None] = mapped_column(Money)
    # approved tier: $ per 1,000 views
    tier2_cpm_rate: Mapped[Decimal | None] = mapped_column(Money)
    # core tier: flat $ per qualifying clip
    tier3_fixed_rate: Mapped[Decimal | None] = mapped_column(Money)
    tier1_max_per_clip: Mapped[Decimal | None] = mapped_column(Money)
    tier2_max_per_clip: Mapped[Decimal | None] = mapped_column(Money)
    tier3_max_per_clip: Mapped[Decimal | None] = mapped_column(Money)
    # lifetime budget per clipper in this campaign, across all batches
    tier1_max_per_campaign: Mapped[Decimal | None] = mapped_column(Money)
    tier2_max_per_campaign: Mapped[Decimal | None] = mapped_column(Money)
    tier3_max_per_campaign: Mapped[Decimal | None] = mapped_column(Money)
    required_tags: Mapped[list | None] = mapped_column(JSONType)
    max_clips_per_clipper: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    clips: Mapped[list["Clip"]] = relationship(back_populates="campaign")

    __table_args__ = (
        CheckConstraint(_in("status", CAMPAIGN_STATUSES), name="ck_campaigns_status"),
    )


class CampaignAssignment(Base):
    """A clipper allowed to submit to a campaign, plus what they have earned in it."""

    __tablename__ = "campaign_clipper_assignments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    campaign_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE")
    )
    clipper_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("clipper_profiles.id", ondelete="CASCADE")
    )
    # Sum of payout_amount over this clipper's batched clips in the campaign
    total_earned_in_campaign: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_assignment_campaign_clipper", "campaign_id", "clipper_id", unique=True),
        Index("idx_assignments_clipper", "clipper_id"),
    )


class Clip(Base):
    __tablename__ = "clips"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    campaign_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="SET NULL")
    )
    clipper_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("clipper_profiles.id", ondelete="SET NULL")
    )
    platform: Mapped[str] = mapped_column(Text, default="twitter")
    platform_post_url: Mapped[str] = mapped_column(Text)
    platform_post_id: Mapped[str | None] = mapped_column(Text)
    tweet_text: Mapped[str | None] = mapped_column(Text)
    author_username: Mapped[str | None] = mapped_column(Text)

    views: Mapped[int] = mapped_column(BigInteger, default=0)
    likes: Mapped[int] = mapped_column(Integer, default=0)
    comments: Mapped[int] = mapped_column(Integer, default=0)
    shares: Mapped[int] = mapped_column(Integer, default=0)
    retweets: Mapped[int] = mapped_column(Integer, default=0)
    impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    metrics_updated_at: Mapped[datetime | None] = mapped_column(DateTime)
    tag_compliance: Mapped[dict | None] = mapped_column(JSONType)

    status: Mapped[str] = mapped_column(Text, default="pending")
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    approved_by: Mapped[UUID | None] = mapped_column(Uuid)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime)

    payout_amount: Mapped[Decimal | None] = mapped_column(Money)
    payout_batch_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("payout_batches.id", ondelete="SET NULL")
    )

    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False)
    duplicate_of_clip_id: Mapped[UUID | None] = mapped_column(Uuid)

    posted_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    campaign: Mapped["Campaign | None"] = relationship(back_populates="clips")
    clipper: Mapped["ClipperProfile | None"] = relationship(back_populates="clips")

    __table_args__ = (
        CheckConstraint(_in("status", CLIP_STATUSES), name="ck_clips_status"),
        CheckConstraint(_in("platform", PLATFORMS), name="ck_clips_platform"),
        CheckConstraint("views >= 0", name="ck_clips_views_non_negative"),
        Index("idx_clips_clipper", "clipper_id"),
        Index("idx_clips_campaign", "campaign_id"),
        Index("idx_clips_status", "status"),
        Index("idx_clips_platform_url", "platform_post_url"),
    )


class PayoutBatch(Base):
    __tablename__ = "payout_batches"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    period_start: Mapped[datetime] = mapped_column(DateTime)
    period_end: Mapped[datetime] = mapped_column(DateTime)
    total_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    clips_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(Text, default="draft")
    processed_by: Mapped[UUID | None] = mapped_column(Uuid)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    clipper_payouts: Mapped[list["ClipperPayout"]] = relationship(back_populates="batch")

    __table_args__ = (
        CheckConstraint(_in("status", BATCH_STATUSES), name="ck_payout_batches_status"),
    )


class ClipperPayout(Base):
    __tablename__ = "clipper_payouts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    batch_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("payout_batches.id", ondelete="CASCADE")
    )
    clipper_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("clipper_profiles.id", ondelete="SET NULL")
    )
    total_views: Mapped[int] = mapped_column(BigInteger, default=0)
    clips_count: Mapped[int] = mapped_column(Integer, default=0)
    # Includes bonus_amount
    amount: Mapped[Decimal] = mapped_column(Money)
    bonus_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    status: Mapped[str] = mapped_column(Text, default="pending")
    paid_at: Mapped[datetime | None] = mapped_column(DateTime)
    admin_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    batch: Mapped["PayoutBatch"] = relationship(back_populates="clipper_payouts")
    clipper: Mapped["ClipperProfile | None"] = relationship()

    __table_args__ = (
        CheckConstraint(_in("status", PAYOUT_STATUSES), name="ck_clipper_payouts_status"),
        Index("idx_clipper_payouts_batch", "batch_id"),
    )


class PlatformSetting(Base):
    __tablename__ = "platform_settings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    key: Mapped[str] = mapped_column(Text, unique=True)
    value: Mapped[dict] = mapped_column(JSONType)
    updated_by: Mapped[UUID | None] = mapped_column(Uuid)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
