"""
Payout engine: per-clip payout math and payout batch generation.

CRITICAL: Payout is calculated PER CLIP, then aggregated PER CLIPPER.
Each qualifying clip gets its own payout_amount; the clipper's payout row is
the sum of those amounts. Rounding to cents happens per clip, before
aggregation, so the batch total always equals the sum of what the clips show.

Pipeline (generate_payout_batch):
  1. Select approved clips with created_at in [period_start, period_end]
  2. Group by clipper (clips without a clipper are never paid)
  3. Create a draft batch
  4. Per clipper: read the tier once, compute each clip's payout
  5. Mark qualifying clips paid, insert one pending payout row per clipper
  6. Record each clipper's earned-in-campaign total, write batch totals

Per-clip formula (applied to the clip's current views):
  views < min_views_for_payout   → $0, clip stays approved for a later batch
  paid_thousands = floor(views / 1,000)          ← truncation, never rounding
  base           = paid_thousands × rate
  bonus          = base × (bonus_multiplier − 1)  if views ≥ bonus_threshold_views
  amount         = base + bonus

Rate resolution (tier read from the clipper at generation time):
  entry    → campaign.tier1_cpm_rate   if set and non-zero, else tier_settings.entry_rate
  approved → campaign.tier2_cpm_rate   if set and non-zero, else tier_settings.approved_rate
  core     → campaign.tier3_fixed_rate if set and non-zero (flat $ per clip, no
             view multiplication), else tier_settings.core_rate per 1,000 views

Per-clip caps (campaign.tierN_max_per_clip, when set and non-zero) limit
base + bonus; the bonus portion is reduced first. Per-campaign caps
(campaign.tierN_max_per_campaign) then limit what one clipper can earn in
the campaign across all batches, tracked in
campaign_clipper_assignments.total_earned_in_campaign. A clip whose payout
is trimmed to $0 earns nothing and stays approved.

The whole generation runs in one transaction. On Postgres an advisory
transaction lock serializes concurrent generations and the selected clip
rows are locked FOR UPDATE, so two overlapping calls can never both pay
the same clip.
"""

import logging
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.orm import Session, selectinload

from database import is_postgres, transaction
from models.schemas import (
    Caller,
    ClipPayout,
    ClipperPayoutDraft,
    GenerateBatchResult,
    PayoutSettings,
    TierSettings,
)
from models.tables import Campaign, CampaignAssignment, Clip, ClipperPayout, PayoutBatch
from services.settings import get_payout_settings, get_tier_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
VIEWS_PER_RATE_UNIT = 1_000
CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Arbitrary but fixed key for pg_advisory_xact_lock
PAYOUT_GENERATION_LOCK_KEY = 720_340_118

# tier → (campaign rate column, is flat per clip, per-clip cap column, per-campaign cap column)
CAMPAIGN_TIER_FIELDS = {
    "entry": ("tier1_cpm_rate", False, "tier1_max_per_clip", "tier1_max_per_campaign"),
    "approved": ("tier2_cpm_rate", False, "tier2_max_per_clip", "tier2_max_per_campaign"),
    "core": ("tier3_fixed_rate", True, "tier3_max_per_clip", "tier3_max_per_campaign"),
}


def to_cents(value: Decimal) -> Decimal:
    """Round a money value to 2 places, half-up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ===========================================================================
# Per-clip math
# ===========================================================================

def calculate_paid_thousands(views: int) -> int:
    """Whole thousands of views: 1,999 → 1. Fractional thousands earn nothing."""
    if views is None or views <= 0:
        return 0
    return views // VIEWS_PER_RATE_UNIT


def resolve_rate(
    tier: Optional[str],
    campaign: Optional[Campaign],
    tier_settings: TierSettings,
) -> tuple[Decimal, bool]:
    """
    Pick the rate that applies to a clip.

    Returns:
        (rate, is_flat): is_flat is True when the rate is a flat amount per
        clip (core tier campaign override) rather than $ per 1,000 views.
    """
    fields = CAMPAIGN_TIER_FIELDS.get(tier or "entry", CAMPAIGN_TIER_FIELDS["entry"])
    rate_field, is_flat, _, _ = fields

    if campaign is not None:
        campaign_rate = getattr(campaign, rate_field)
        if campaign_rate is not None and Decimal(campaign_rate) != 0:
            return Decimal(campaign_rate), is_flat

    return tier_settings.rate_for(tier), False


def resolve_clip_cap(tier: Optional[str], campaign: Optional[Campaign]) -> Optional[Decimal]:
    """Campaign per-clip cap for this tier, or None when uncapped."""
    _, _, cap_field, _ = CAMPAIGN_TIER_FIELDS.get(tier or "entry", CAMPAIGN_TIER_FIELDS["entry"])
    return _positive_money(campaign, cap_field)


def resolve_campaign_cap(tier: Optional[str], campaign: Optional[Campaign]) -> Optional[Decimal]:
    """Lifetime budget per clipper in the campaign for this tier, or None when uncapped."""
    _, _, _, cap_field = CAMPAIGN_TIER_FIELDS.get(tier or "entry", CAMPAIGN_TIER_FIELDS["entry"])
    return _positive_money(campaign, cap_field)


def _positive_money(campaign: Optional[Campaign], field: str) -> Optional[Decimal]:
    if campaign is None:
        return None
    value = getattr(campaign, field)
    if value is None or Decimal(value) <= 0:
        return None
    return Decimal(value)


def calculate_clip_payout(
    views: int,
    rate: Decimal,
    settings: PayoutSettings,
    flat_rate: bool = False,
    cap: Optional[Decimal] = None,
) -> ClipPayout:
    """
    Dollar payout for a single clip.

    Args:
        views:     Current view count of the clip
        rate:      $ per 1,000 views (or flat $ per clip when flat_rate)
        settings:  Minimum views, bonus threshold and multiplier
        flat_rate: Treat rate as a flat per-clip amount
        cap:       Optional maximum for base + bonus

    Returns:
        ClipPayout with base, bonus and amount (= base + bonus) in cents.
        qualified is False when views are below the minimum.
    """
    views = max(views or 0, 0)

    # ------------------------------------------------------------------
    # Minimum views gate
    # ------------------------------------------------------------------
    if views < settings.min_views_for_payout:
        return ClipPayout(views=views, qualified=False, rate=rate)

    # ------------------------------------------------------------------
    # Base: whole thousands × rate (or the flat rate)
    # ------------------------------------------------------------------
    if flat_rate:
        base = rate
    else:
        base = Decimal(calculate_paid_thousands(views)) * rate

    # ------------------------------------------------------------------
    # Bonus: additive, so base + bonus == base × multiplier
    # ------------------------------------------------------------------
    bonus = Decimal("0")
    if views >= settings.bonus_threshold_views:
        bonus = base * (settings.bonus_multiplier - 1)

    # ------------------------------------------------------------------
    # Per-clip cap
    # ------------------------------------------------------------------
    if cap is not None and base + bonus > cap:
        logger.debug(f"Clip payout capped: ${base + bonus:,.2f} → ${cap:,.2f}")
        bonus = max(cap - base, Decimal("0"))
        base = min(base, cap)

    base = to_cents(base)
    bonus = to_cents(bonus)

    return ClipPayout(
        views=views,
        qualified=True,
        rate=rate,
        base=base,
        bonus=bonus,
        amount=base + bonus,
    )


def apply_campaign_budget(clip_payout: ClipPayout, remaining: Decimal) -> ClipPayout:
    """
    Trim a clip payout to what is left of the clipper's campaign budget.
    The bonus is reduced first; an exhausted budget leaves amount at $0.
    """
    if not clip_payout.qualified or clip_payout.amount <= remaining:
        return clip_payout

    remaining = max(remaining, ZERO)
    logger.debug(f"Clip payout trimmed to campaign budget: ${clip_payout.amount:,.2f} → ${remaining:,.2f}")
    base = min(clip_payout.base, remaining)
    bonus = to_cents(remaining - base)
    base = to_cents(base)

    clip_payout.base = base
    clip_payout.bonus = bonus
    clip_payout.amount = base + bonus
    return clip_payout


# ===========================================================================
# Per-clipper aggregation (pure, no database access)
# ===========================================================================

def build_clipper_payouts(
    clips: Iterable[Clip],
    payout_settings: PayoutSettings,
    tier_settings: TierSettings,
    campaign_earnings: Optional[dict[tuple[UUID, UUID], Decimal]] = None,
) -> list[ClipperPayoutDraft]:
    """
    Group clips by clipper and compute every clip's payout.

    The clipper's tier is read ONCE per group, from the first clip's clipper,
    so all clips of one clipper in one batch use the same tier.

    total_views and clips_count include sub-minimum clips (reporting);
    amount and bonus_amount only include qualifying clips.

    Args:
        campaign_earnings: (clipper_id, campaign_id) → amount already earned
            in that campaign. Checked against the campaign's per-campaign cap
            and updated in place with every amount computed here.

    Returns:
        One ClipperPayoutDraft per clipper, in first-seen order.
    """
    if campaign_earnings is None:
        campaign_earnings = {}

    groups: dict[UUID, list[Clip]] = {}
    orphaned = 0

    for clip in clips:
        if clip.clipper_id is None:
            orphaned += 1
            continue
        groups.setdefault(clip.clipper_id, []).append(clip)

    if orphaned:
        logger.warning(f"Skipped {orphaned} clip(s) with no clipper: they cannot be paid")

    drafts: list[ClipperPayoutDraft] = []

    for clipper_id, group in groups.items():
        first_clipper = group[0].clipper
        tier = first_clipper.tier if first_clipper is not None and first_clipper.tier else "entry"

        draft = ClipperPayoutDraft(clipper_id=clipper_id, tier=tier, clips_count=len(group))

        for clip in group:
            views = clip.views or 0
            draft.total_views += views

            rate, is_flat = resolve_rate(tier, clip.campaign, tier_settings)
            cap = resolve_clip_cap(tier, clip.campaign)
            clip_payout = calculate_clip_payout(views, rate, payout_settings, is_flat, cap)
            clip_payout.clip_id = clip.id

            if clip_payout.qualified and clip.campaign is not None:
                key = (clipper_id, clip.campaign.id)
                earned = campaign_earnings.get(key, ZERO)
                budget = resolve_campaign_cap(tier, clip.campaign)
                if budget is not None:
                    apply_campaign_budget(clip_payout, budget - earned)
                campaign_earnings[key] = earned + clip_payout.amount

            if clip_payout.qualified:
                draft.amount += clip_payout.amount
                draft.bonus_amount += clip_payout.bonus

            draft.clip_payouts.append(clip_payout)

            logger.debug(
                f"  [{clipper_id}] clip={clip.id} views={views:,} tier={tier} "
                f"rate=${rate}{' flat' if is_flat else '/1K'} → "
                f"${clip_payout.amount:,.2f} (bonus ${clip_payout.bonus:,.2f})"
            )

        drafts.append(draft)

    return drafts


# ===========================================================================
# Batch generation
# ===========================================================================

def period_bounds(
    period_start: Union[date, datetime],
    period_end: Union[date, datetime],
) -> tuple[datetime, datetime]:
    """
    Inclusive datetime bounds. A bare date end covers the whole day
    (up to 23:59:59.999999).
    """
    if not isinstance(period_start, datetime):
        period_start = datetime.combine(period_start, time.min)
    if not isinstance(period_end, datetime):
        period_end = datetime.combine(period_end, time.max)
    return period_start, period_end


def generate_payout_batch(
    db: Session,
    caller: Caller,
    period_start: Union[date, datetime],
    period_end: Union[date, datetime],
) -> GenerateBatchResult:
    """
    Create a draft payout batch from approved clips created in the period.

    Returns:
        GenerateBatchResult with batch_id / total_amount / total_clips, or
        an error (no batch is created) when the caller is not an admin, the
        period is inverted, or no clip is eligible.

    Raises:
        PersistenceError: database failure, nothing is written.
    """
    if not caller.is_admin:
        return GenerateBatchResult(error="Unauthorized")

    period_start, period_end = period_bounds(period_start, period_end)
    if period_start > period_end:
        return GenerateBatchResult(
            error=f"period_start ({period_start}) must be <= period_end ({period_end})"
        )

    logger.info(f"=" * 60)
    logger.info(f"PAYOUT BATCH GENERATION: {period_start} to {period_end}")
    logger.info(f"=" * 60)

    with transaction(db, "generate payout batch"):
        if is_postgres(db):
            db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": PAYOUT_GENERATION_LOCK_KEY},
            )

        # ------------------------------------------------------------------
        # Step 1: Select eligible clips
        # ------------------------------------------------------------------
        eligible = db.execute(
            select(Clip)
            .options(selectinload(Clip.clipper), selectinload(Clip.campaign))
            .where(
                Clip.status == "approved",
                Clip.created_at >= period_start,
                Clip.created_at <= period_end,
            )
            .order_by(Clip.created_at, Clip.id)
            .with_for_update(of=Clip)
        ).scalars().all()

        if not eligible:
            logger.info("No eligible clips found for this period: no batch created")
            return GenerateBatchResult(error="No eligible clips found for this period")

        logger.info(f"Step 1: {len(eligible)} approved clip(s) in period")

        # ------------------------------------------------------------------
        # Step 2: Compute payouts per clipper
        # ------------------------------------------------------------------
        payout_settings = get_payout_settings(db)
        tier_settings = get_tier_settings(db)
        assignments = _lock_assignments(db, eligible)
        campaign_earnings = {
            key: assignment.total_earned_in_campaign or ZERO
            for key, assignment in assignments.items()
        }
        drafts = build_clipper_payouts(eligible, payout_settings, tier_settings, campaign_earnings)

        logger.info(
            f"Step 2: {len(drafts)} clipper group(s), "
            f"min_views={payout_settings.min_views_for_payout:,}, "
            f"bonus_threshold={payout_settings.bonus_threshold_views:,}, "
            f"multiplier={payout_settings.bonus_multiplier}"
        )

        # ------------------------------------------------------------------
        # Step 3: Create the draft batch
        # ------------------------------------------------------------------
        batch = PayoutBatch(
            period_start=period_start,
            period_end=period_end,
            status="draft",
            total_amount=ZERO,
            clips_count=0,
        )
        db.add(batch)
        db.flush()

        # ------------------------------------------------------------------
        # Step 4: Mark paid clips, insert clipper payout rows
        # ------------------------------------------------------------------
        clips_by_id = {clip.id: clip for clip in eligible}
        total_amount = ZERO
        total_clips = 0
        paid_clip_count = 0

        for draft in drafts:
            for clip_payout in draft.paid_clips:
                clip = clips_by_id[clip_payout.clip_id]
                clip.payout_amount = clip_payout.amount
                clip.payout_batch_id = batch.id
                clip.status = "paid"
                paid_clip_count += 1

            if draft.amount <= 0:
                logger.debug(f"  Clipper {draft.clipper_id}: nothing qualified, no payout row")
                continue

            db.add(ClipperPayout(
                batch_id=batch.id,
                clipper_id=draft.clipper_id,
                total_views=draft.total_views,
                clips_count=draft.clips_count,
                amount=draft.amount,
                bonus_amount=draft.bonus_amount,
                status="pending",
            ))
            total_amount += draft.amount
            total_clips += draft.clips_count

            logger.info(
                f"  Clipper {draft.clipper_id} ({draft.tier}): "
                f"{draft.clips_count} clip(s), {draft.total_views:,} views, "
                f"${draft.amount:,.2f} (bonus ${draft.bonus_amount:,.2f})"
            )

        # ------------------------------------------------------------------
        # Step 5: Record what each clipper has now earned per campaign
        # ------------------------------------------------------------------
        for (clipper_id, campaign_id), earned in campaign_earnings.items():
            assignment = assignments.get((clipper_id, campaign_id))
            if assignment is not None:
                assignment.total_earned_in_campaign = earned
            elif earned > 0:
                db.add(CampaignAssignment(
                    campaign_id=campaign_id,
                    clipper_id=clipper_id,
                    total_earned_in_campaign=earned,
                ))

        # ------------------------------------------------------------------
        # Step 6: Batch totals
        # ------------------------------------------------------------------
        batch.total_amount = total_amount
        batch.clips_count = total_clips
        db.flush()
        batch_id = batch.id

    logger.info(
        f"Batch {batch_id} created: {paid_clip_count} clip(s) paid, "
        f"clips_count={total_clips}, total=${total_amount:,.2f}"
    )

    return GenerateBatchResult(
        success=True,
        batch_id=batch_id,
        total_amount=total_amount,
        total_clips=total_clips,
    )


def _lock_assignments(
    db: Session,
    clips: Iterable[Clip],
) -> dict[tuple[UUID, UUID], CampaignAssignment]:
    """Assignment rows for every (clipper, campaign) pair among the clips, locked FOR UPDATE."""
    pairs = {
        (clip.clipper_id, clip.campaign_id)
        for clip in clips
        if clip.clipper_id is not None and clip.campaign_id is not None
    }
    if not pairs:
        return {}

    rows = db.execute(
        select(CampaignAssignment)
        .where(
            CampaignAssignment.clipper_id.in_([clipper_id for clipper_id, _ in pairs]),
            CampaignAssignment.campaign_id.in_([campaign_id for _, campaign_id in pairs]),
        )
        .with_for_update()
    ).scalars().all()

    return {
        (row.clipper_id, row.campaign_id): row
        for row in rows
        if (row.clipper_id, row.campaign_id) in pairs
    }
