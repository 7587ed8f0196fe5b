"""
Tests for services/clips.py: submission, review, single-clip refresh.
"""

import sys
import os
from uuid import uuid4

import pytest
from sqlalchemy import func, select

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from models.schemas import Caller, TweetData, TweetEntities
from models.tables import Clip
from services.clips import approve_clip, refresh_clip_metrics, reject_clip, submit_clip

URL = "https://x.com/alice/status/1790000000000000001"


def _tweet(url=URL, views=12_000, text="Out now #launch"):
    return TweetData(
        id="1790000000000000001",
        text=text,
        author_username="alice",
        views=views,
        likes=50,
        retweets=5,
        replies=4,
        impressions=views,
        entities=TweetEntities(hashtags=["launch"]),
    )


def _clip_count(db):
    return db.execute(select(func.count()).select_from(Clip)).scalar_one()


@pytest.fixture
def clipper(make_clipper):
    return make_clipper("Alice")


@pytest.fixture
def clipper_caller(clipper):
    return Caller(user_id=clipper.user_id)


@pytest.fixture
def campaign(make_campaign, make_assignment, clipper):
    campaign = make_campaign(required_tags=["#launch"])
    make_assignment(clipper, campaign)
    return campaign


# ===========================================================================
# Submission
# ===========================================================================

class TestSubmitClip:

    def test_creates_pending_clip(self, db, clipper, clipper_caller, campaign):
        result = submit_clip(db, clipper_caller, campaign.id, URL, fetch_tweet=lambda u: _tweet(u))

        assert result.success is True
        clip = db.get(Clip, result.clip_id)
        assert clip.status == "pending"
        assert clip.platform_post_id == "1790000000000000001"
        assert clip.views == 12_000
        assert clip.comments == 4
        assert clip.author_username == "alice"
        assert clip.metrics_updated_at is not None
        assert clip.tag_compliance["compliant"] is True
        db.refresh(clipper)
        assert clipper.clips_submitted == 1

    def test_fetch_failure_still_creates_clip(self, db, clipper_caller, campaign):
        result = submit_clip(db, clipper_caller, campaign.id, URL, fetch_tweet=lambda u: None)

        assert result.success is True
        clip = db.get(Clip, result.clip_id)
        assert clip.views == 0
        assert clip.metrics_updated_at is None
        assert clip.tag_compliance is None

    def test_duplicate_url_rejected(self, db, clipper_caller, campaign, make_clipper, make_clip):
        existing = make_clip(make_clipper("Bob"), campaign, url=URL, status="pending")

        result = submit_clip(db, clipper_caller, campaign.id, URL, fetch_tweet=lambda u: _tweet(u))

        assert result.success is False
        assert result.is_duplicate is True
        assert result.existing_clip_id == existing.id
        assert _clip_count(db) == 1

    def test_invalid_url(self, db, clipper_caller, campaign):
        result = submit_clip(
            db, clipper_caller, campaign.id, "https://example.com/post/1",
            fetch_tweet=lambda u: _tweet(u),
        )
        assert result.error == "Invalid Twitter/X URL"
        assert _clip_count(db) == 0

    def test_inactive_campaign(self, db, clipper_caller, make_campaign):
        paused = make_campaign(status="paused")
        result = submit_clip(db, clipper_caller, paused.id, URL, fetch_tweet=lambda u: _tweet(u))
        assert result.error == "Campaign is not accepting submissions"

    def test_unknown_campaign(self, db, clipper_caller):
        result = submit_clip(db, clipper_caller, uuid4(), URL, fetch_tweet=lambda u: _tweet(u))
        assert result.error == "Campaign not found"

    def test_clipper_not_assigned(self, db, clipper_caller, make_campaign):
        other = make_campaign(name="Other Campaign")

        result = submit_clip(db, clipper_caller, other.id, URL, fetch_tweet=lambda u: _tweet(u))

        assert result.error == "You are not assigned to this campaign"
        assert _clip_count(db) == 0

    def test_caller_without_profile(self, db, campaign):
        result = submit_clip(db, Caller(user_id=uuid4()), campaign.id, URL, fetch_tweet=lambda u: None)
        assert result.error == "Clipper profile not found"

    def test_anonymous_caller(self, db, campaign):
        result = submit_clip(db, Caller(), campaign.id, URL, fetch_tweet=lambda u: None)
        assert result.error == "Unauthorized"

    def test_max_clips_per_clipper(self, db, clipper, clipper_caller, make_campaign, make_clip, make_assignment):
        capped = make_campaign(max_clips_per_clipper=1)
        make_assignment(clipper, capped)
        make_clip(clipper, capped, status="pending")

        result = submit_clip(db, clipper_caller, capped.id, URL, fetch_tweet=lambda u: _tweet(u))

        assert result.success is False
        assert "maximum of 1 clips" in result.error


# ===========================================================================
# Review
# ===========================================================================

class TestReview:

    def test_approve_pending(self, db, admin, clipper, make_clip):
        clip = make_clip(clipper, status="pending")

        result = approve_clip(db, admin, clip.id)

        assert result.success is True
        db.refresh(clip)
        db.refresh(clipper)
        assert clip.status == "approved"
        assert clip.approved_by == admin.user_id
        assert clip.approved_at is not None
        assert clipper.clips_approved == 1

    def test_approve_rejected_clears_reason(self, db, admin, clipper, make_clip):
        clip = make_clip(clipper, status="rejected", rejection_reason="blurry")

        approve_clip(db, admin, clip.id)

        db.refresh(clip)
        assert clip.status == "approved"
        assert clip.rejection_reason is None

    def test_cannot_approve_twice(self, db, admin, clipper, make_clip):
        clip = make_clip(clipper, status="pending")
        approve_clip(db, admin, clip.id)

        second = approve_clip(db, admin, clip.id)

        assert second.success is False
        db.refresh(clipper)
        assert clipper.clips_approved == 1

    def test_paid_clip_is_frozen(self, db, admin, clipper, make_clip):
        clip = make_clip(clipper, status="paid")
        assert approve_clip(db, admin, clip.id).success is False
        assert reject_clip(db, admin, clip.id, "late").success is False
        db.refresh(clip)
        assert clip.status == "paid"

    def test_reject_approved_decrements_counter(self, db, admin, clipper, make_clip):
        clip = make_clip(clipper, status="pending")
        approve_clip(db, admin, clip.id)

        result = reject_clip(db, admin, clip.id, "missing tag")

        assert result.success is True
        db.refresh(clip)
        db.refresh(clipper)
        assert clip.status == "rejected"
        assert clip.rejection_reason == "missing tag"
        assert clipper.clips_approved == 0

    def test_unknown_clip(self, db, admin):
        assert approve_clip(db, admin, uuid4()).error == "Clip not found"
        assert reject_clip(db, admin, uuid4(), "x").error == "Clip not found"

    def test_non_admin(self, db, non_admin, clipper, make_clip):
        clip = make_clip(clipper, status="pending")
        assert approve_clip(db, non_admin, clip.id).error == "Unauthorized"
        assert reject_clip(db, non_admin, clip.id, "x").error == "Unauthorized"


# ===========================================================================
# Single-clip refresh
# ===========================================================================

class TestRefreshClipMetrics:

    def test_updates_clip_and_clipper_totals(self, db, admin, clipper, campaign, make_clip):
        make_clip(clipper, campaign, views=1_000)
        clip = make_clip(clipper, campaign, views=0, url=URL, post_id="1790000000000000001")

        result = refresh_clip_metrics(db, admin, clip.id, fetch_tweet=lambda u: _tweet(u, views=5_000))

        assert result.success is True
        assert result.views == 5_000
        db.refresh(clip)
        db.refresh(clipper)
        assert clip.views == 5_000
        assert clipper.total_views == 6_000
        assert clipper.avg_views_per_clip == 3_000

    def test_fetch_failure(self, db, admin, clipper, make_clip):
        clip = make_clip(clipper, views=10)

        result = refresh_clip_metrics(db, admin, clip.id, fetch_tweet=lambda u: None)

        assert result.error == "Failed to fetch tweet data"
        db.refresh(clip)
        assert clip.views == 10

    def test_unknown_clip(self, db, admin):
        result = refresh_clip_metrics(db, admin, uuid4(), fetch_tweet=lambda u: None)
        assert result.error == "Clip not found or missing tweet ID"

    def test_anonymous_caller(self, db, clipper, make_clip):
        clip = make_clip(clipper)
        result = refresh_clip_metrics(db, Caller(), clip.id, fetch_tweet=lambda u: None)
        assert result.error == "Unauthorized"
