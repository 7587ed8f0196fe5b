"""
Clip submission and review.

  submit_clip          clipper → new pending clip (URL must be unique)
  approve_clip         admin: pending/rejected → approved
  reject_clip          admin: pending/approved → rejected
  refresh_clip_metrics re-fetch one clip's metrics, then recompute the
                       clipper's total_views / avg_views_per_clip

Clips only ever become `paid` through payout batch generation, so none of
these operations accept or produce that status.
"""

import logging
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from database import transaction
from models.schemas import ActionResult, Caller, ClipMetricsResult, SubmitClipResult, TweetData
from models.tables import Campaign, Clip, ClipperProfile, utcnow
from services.campaign_assignments import get_assignment
from services.duplicates import check_duplicate_url
from services.metrics_refresher import apply_tweet_metrics, compute_tag_compliance
from services.twitter_api import fetch_tweet_by_url, parse_tweet_id

logger = logging.getLogger(__name__)

TweetFetcher = Callable[[str], Optional[TweetData]]


# ===========================================================================
# Submission
# ===========================================================================

def submit_clip(
    db: Session,
    caller: Caller,
    campaign_id: UUID,
    platform_post_url: str,
    fetch_tweet: Optional[TweetFetcher] = None,
) -> SubmitClipResult:
    """
    Create a pending clip for the calling clipper.

    Rejected (no clip created) when:
      - the caller has no clipper profile
      - the campaign does not exist or is not active
      - the clipper is not assigned to the campaign
      - the clipper reached the campaign's max_clips_per_clipper
      - the URL is not a Twitter/X status URL
      - the URL was already submitted (is_duplicate=True in the result)

    A failed metrics fetch does NOT block submission: the clip is created
    with zero metrics and picked up by the next metrics refresh.
    """
    if caller.user_id is None:
        return SubmitClipResult(error="Unauthorized")

    fetch_tweet = fetch_tweet or fetch_tweet_by_url
    url = platform_post_url.strip()

    profile = db.execute(
        select(ClipperProfile).where(ClipperProfile.user_id == caller.user_id)
    ).scalar_one_or_none()
    if profile is None:
        return SubmitClipResult(error="Clipper profile not found")

    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        return SubmitClipResult(error="Campaign not found")
    if campaign.status != "active":
        return SubmitClipResult(error="Campaign is not accepting submissions")

    if get_assignment(db, campaign.id, profile.id) is None:
        return SubmitClipResult(error="You are not assigned to this campaign")

    if campaign.max_clips_per_clipper and campaign.max_clips_per_clipper > 0:
        submitted = db.execute(
            select(func.count(Clip.id)).where(
                Clip.campaign_id == campaign.id,
                Clip.clipper_id == profile.id,
            )
        ).scalar_one()
        if submitted >= campaign.max_clips_per_clipper:
            return SubmitClipResult(
                error=(
                    f"You have reached the maximum of "
                    f"{campaign.max_clips_per_clipper} clips for this campaign"
                )
            )

    tweet_id = parse_tweet_id(url)
    if not tweet_id:
        return SubmitClipResult(error="Invalid Twitter/X URL")

    duplicate = check_duplicate_url(db, url)
    if duplicate.is_duplicate:
        logger.info(f"Rejected duplicate submission of {url} (existing clip {duplicate.clip_id})")
        return SubmitClipResult(
            error="This URL has already been submitted",
            is_duplicate=True,
            existing_clip_id=duplicate.clip_id,
        )

    tweet = fetch_tweet(url)
    if tweet is None:
        logger.warning(f"Could not fetch metrics for {url}; clip created with zero metrics")

    now = utcnow()
    with transaction(db, "submit clip"):
        clip = Clip(
            campaign_id=campaign.id,
            clipper_id=profile.id,
            platform="twitter",
            platform_post_url=url,
            platform_post_id=tweet_id,
            tweet_text=tweet.text if tweet else None,
            author_username=tweet.author_username if tweet else None,
            views=tweet.views if tweet else 0,
            likes=tweet.likes if tweet else 0,
            comments=tweet.replies if tweet else 0,
            shares=0,
            retweets=tweet.retweets if tweet else 0,
            impressions=tweet.impressions if tweet else 0,
            metrics_updated_at=now if tweet else None,
            tag_compliance=compute_tag_compliance(campaign, tweet) if tweet else None,
            status="pending",
            is_duplicate=False,
            posted_at=(tweet.created_at if tweet and tweet.created_at else now),
        )
        db.add(clip)
        profile.clips_submitted = (profile.clips_submitted or 0) + 1
        db.flush()
        clip_id = clip.id

    logger.info(f"Clip {clip_id} submitted by clipper {profile.id} for campaign {campaign.id}")
    return SubmitClipResult(success=True, clip_id=clip_id)


# ===========================================================================
# Review
# ===========================================================================

def approve_clip(db: Session, caller: Caller, clip_id: UUID) -> ActionResult:
    if not caller.is_admin:
        return ActionResult(error="Unauthorized")

    with transaction(db, "approve clip"):
        clip = db.get(Clip, clip_id)
        if clip is None:
            return ActionResult(error="Clip not found")
        if clip.status not in ("pending", "rejected"):
            return ActionResult(error=f"Cannot approve a clip with status '{clip.status}'")

        clip.status = "approved"
        clip.rejection_reason = None
        clip.approved_by = caller.user_id
        clip.approved_at = utcnow()

        if clip.clipper is not None:
            clip.clipper.clips_approved = (clip.clipper.clips_approved or 0) + 1

    logger.info(f"Clip {clip_id} approved")
    return ActionResult(success=True)


def reject_clip(db: Session, caller: Caller, clip_id: UUID, reason: str) -> ActionResult:
    if not caller.is_admin:
        return ActionResult(error="Unauthorized")

    with transaction(db, "reject clip"):
        clip = db.get(Clip, clip_id)
        if clip is None:
            return ActionResult(error="Clip not found")
        if clip.status not in ("pending", "approved"):
            return ActionResult(error=f"Cannot reject a clip with status '{clip.status}'")

        if clip.status == "approved" and clip.clipper is not None:
            clip.clipper.clips_approved = max((clip.clipper.clips_approved or 0) - 1, 0)

        clip.status = "rejected"
        clip.rejection_reason = reason

    logger.info(f"Clip {clip_id} rejected: {reason}")
    return ActionResult(success=True)


# ===========================================================================
# Single-clip metrics refresh
# ===========================================================================

def refresh_clip_metrics(
    db: Session,
    caller: Caller,
    clip_id: UUID,
    fetch_tweet: Optional[TweetFetcher] = None,
) -> ClipMetricsResult:
    if caller.user_id is None and not caller.is_admin:
        return ClipMetricsResult(error="Unauthorized")

    fetch_tweet = fetch_tweet or fetch_tweet_by_url

    clip = db.execute(
        select(Clip).options(selectinload(Clip.campaign)).where(Clip.id == clip_id)
    ).scalar_one_or_none()
    if clip is None or not clip.platform_post_id:
        return ClipMetricsResult(error="Clip not found or missing tweet ID")

    tweet = fetch_tweet(clip.platform_post_url)
    if tweet is None:
        return ClipMetricsResult(error="Failed to fetch tweet data")

    with transaction(db, "refresh clip metrics"):
        apply_tweet_metrics(clip, tweet, utcnow())
        db.flush()

        if clip.clipper_id is not None:
            _recompute_clipper_views(db, clip.clipper_id)

    logger.info(f"Clip {clip_id} metrics refreshed: {tweet.views:,} views")
    return ClipMetricsResult(success=True, views=tweet.views)


def _recompute_clipper_views(db: Session, clipper_id: UUID) -> None:
    total_views, clip_count = db.execute(
        select(func.coalesce(func.sum(Clip.views), 0), func.count(Clip.id))
        .where(Clip.clipper_id == clipper_id)
    ).one()

    profile = db.get(ClipperProfile, clipper_id)
    if profile is None:
        return
    profile.total_views = int(total_views)
    profile.avg_views_per_clip = round(int(total_views) / clip_count) if clip_count else 0
