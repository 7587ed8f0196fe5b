"""
Shared test fixtures for the Clipper Payout Platform test suite.

Every test gets a fresh in-memory SQLite database (StaticPool, so all
sessions share the one connection). The factory fixtures `make_clipper`,
`make_campaign`, `make_clip` and `make_assignment` insert rows with
sensible defaults and return the ORM objects.

DATABASE_URL is pointed at SQLite before anything imports `database`, so
no test ever needs a running Postgres.
"""

import os
import sys
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models.schemas import Caller
from models.tables import (
    Base,
    Campaign,
    CampaignAssignment,
    Clip,
    ClipperProfile,
    PlatformSetting,
    User,
)

PERIOD_DAY = datetime(2026, 3, 10, 12, 0, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    yield session
    session.close()


@pytest.fixture
def admin():
    return Caller(user_id=uuid4(), is_admin=True)


@pytest.fixture
def non_admin():
    return Caller(user_id=uuid4(), is_admin=False)


# ===========================================================================
# Row factories
# ===========================================================================

@pytest.fixture
def make_clipper(db):
    def _make(name="Alice", tier="entry", email=None):
        user = User(
            email=email or f"{name.lower()}-{uuid4().hex[:8]}@example.com",
            name=name,
            role="clipper",
        )
        db.add(user)
        db.flush()
        profile = ClipperProfile(user_id=user.id, tier=tier, status="active")
        db.add(profile)
        db.commit()
        return profile
    return _make


@pytest.fixture
def make_campaign(db):
    def _make(name="Launch Campaign", status="active", **fields):
        campaign = Campaign(name=name, client_name="Acme", status=status, **fields)
        db.add(campaign)
        db.commit()
        return campaign
    return _make


@pytest.fixture
def make_clip(db):
    def _make(
        clipper=None,
        campaign=None,
        views=0,
        status="approved",
        created_at=PERIOD_DAY,
        url=None,
        post_id=None,
        **fields,
    ):
        post_id = post_id or str(uuid4().int)[:18]
        clip = Clip(
            clipper_id=clipper.id if clipper else None,
            campaign_id=campaign.id if campaign else None,
            platform_post_url=url or f"https://x.com/someone/status/{post_id}",
            platform_post_id=post_id,
            views=views,
            status=status,
            created_at=created_at,
            **fields,
        )
        db.add(clip)
        db.commit()
        return clip
    return _make


@pytest.fixture
def store_setting(db):
    def _store(key, value):
        db.add(PlatformSetting(key=key, value=value))
        db.commit()
    return _store


@pytest.fixture
def make_assignment(db):
    def _assign(clipper, campaign, earned="0.00"):
        assignment = CampaignAssignment(
            clipper_id=clipper.id,
            campaign_id=campaign.id,
            total_earned_in_campaign=Decimal(earned),
        )
        db.add(assignment)
        db.commit()
        return assignment
    return _assign
