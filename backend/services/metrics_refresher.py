"""
Metrics refresher: re-fetch view/like/comment counts for stale clips.

A clip is refreshed when ALL of these hold:
  - its campaign is active
  - it has an external post id (tweet id)
  - its status is pending or approved (rejected and paid clips are frozen)
  - metrics_updated_at is null or older than METRICS_FRESHNESS_HOURS

Triggered by an external scheduler (GET /api/cron/refresh-metrics); there
is no self-driven loop. One clip's failure (fetch returned None, fetch
raised, or the write failed) is counted in `errors` and the run moves on to
the next clip. Each clip is committed on its own.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

import config
from database import PersistenceError, transaction
from models.schemas import RefreshResult, TweetData
from models.tables import Campaign, Clip, utcnow
from services.twitter_api import check_tag_compliance, fetch_tweet_by_id

logger = logging.getLogger(__name__)

REFRESHABLE_STATUSES = ("pending", "approved")

MetricsFetcher = Callable[[str], Optional[TweetData]]


# ===========================================================================
# Applying fetched metrics to a clip
# ===========================================================================

def apply_tweet_metrics(clip: Clip, tweet: TweetData, now: datetime) -> None:
    """
    Overwrite a clip's metrics with freshly fetched values and recompute tag
    compliance against its campaign's required tags.
    """
    clip.views = tweet.views
    clip.likes = tweet.likes
    clip.retweets = tweet.retweets
    clip.comments = tweet.replies
    clip.impressions = tweet.impressions
    clip.tweet_text = tweet.text
    clip.tag_compliance = compute_tag_compliance(clip.campaign, tweet)
    clip.metrics_updated_at = now


def compute_tag_compliance(campaign: Optional[Campaign], tweet: TweetData) -> Optional[dict]:
    """Tag compliance as stored on the clip, or None when the campaign requires no tags."""
    if campaign is None or not campaign.required_tags:
        return None
    result = check_tag_compliance(tweet.text, tweet.entities, list(campaign.required_tags))
    return result.model_dump()


# ===========================================================================
# Batch refresh
# ===========================================================================

def find_stale_clips(db: Session, now: datetime) -> list[tuple]:
    """(clip_id, post_id) rows of clips due for a refresh."""
    cutoff = now - timedelta(hours=config.METRICS_FRESHNESS_HOURS)

    return db.execute(
        select(Clip.id, Clip.platform_post_id)
        .join(Campaign, Clip.campaign_id == Campaign.id)
        .where(
            Campaign.status == "active",
            Clip.platform_post_id.is_not(None),
            Clip.status.in_(REFRESHABLE_STATUSES),
            or_(Clip.metrics_updated_at.is_(None), Clip.metrics_updated_at < cutoff),
        )
        .order_by(Clip.metrics_updated_at.is_not(None), Clip.metrics_updated_at, Clip.id)
    ).all()


def refresh_stale_metrics(
    db: Session,
    fetch_metrics: Optional[MetricsFetcher] = None,
    now: Optional[datetime] = None,
    delay: Optional[float] = None,
) -> RefreshResult:
    """
    Refresh every stale clip.

    Args:
        db:            Open session
        fetch_metrics: post_id → TweetData | None (defaults to twitterapi.io)
        now:           Clock override (naive UTC)
        delay:         Seconds to wait between external calls
                       (defaults to METRICS_REQUEST_DELAY)

    Returns:
        RefreshResult{total, updated, errors, timestamp}
    """
    fetch_metrics = fetch_metrics or fetch_tweet_by_id
    now = now or utcnow()
    delay = config.METRICS_REQUEST_DELAY if delay is None else delay

    stale = find_stale_clips(db, now)
    db.commit()  # end the read transaction before the per-clip loop

    logger.info(f"Metrics refresh: {len(stale)} stale clip(s)")

    updated = 0
    errors = 0

    for index, (clip_id, post_id) in enumerate(stale):
        if index > 0 and delay > 0:
            time.sleep(delay)

        # ------------------------------------------------------------------
        # Fetch: failures are per clip, never fatal to the run
        # ------------------------------------------------------------------
        try:
            tweet = fetch_metrics(post_id)
        except Exception as e:
            logger.error(f"Failed to fetch metrics for clip {clip_id} (post {post_id}): {e}")
            errors += 1
            continue

        if tweet is None:
            logger.warning(f"No metrics returned for clip {clip_id} (post {post_id})")
            errors += 1
            continue

        # ------------------------------------------------------------------
        # Write
        # ------------------------------------------------------------------
        try:
            with transaction(db, f"refresh metrics for clip {clip_id}"):
                clip = db.execute(
                    select(Clip)
                    .options(selectinload(Clip.campaign))
                    .where(Clip.id == clip_id)
                ).scalar_one_or_none()

                if clip is None or clip.status not in REFRESHABLE_STATUSES:
                    logger.debug(f"Clip {clip_id} no longer refreshable, skipping")
                    continue

                apply_tweet_metrics(clip, tweet, now)
        except PersistenceError:
            errors += 1
            continue

        updated += 1
        logger.debug(f"  Clip {clip_id}: {tweet.views:,} views, {tweet.likes:,} likes")

    logger.info(
        f"Metrics refresh complete: total={len(stale)}, updated={updated}, errors={errors}"
    )
    return RefreshResult(total=len(stale), updated=updated, errors=errors, timestamp=now)
