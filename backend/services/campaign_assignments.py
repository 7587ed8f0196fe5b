"""
Campaign assignments: which clippers may submit to which campaign.

Each assignment row also carries the clipper's earned-in-campaign total,
which payout generation checks against the campaign's per-campaign cap.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import transaction
from models.schemas import ActionResult, Caller
from models.tables import Campaign, CampaignAssignment, ClipperProfile

logger = logging.getLogger(__name__)


def get_assignment(db: Session, campaign_id: UUID, clipper_id: UUID) -> Optional[CampaignAssignment]:
    return db.execute(
        select(CampaignAssignment).where(
            CampaignAssignment.campaign_id == campaign_id,
            CampaignAssignment.clipper_id == clipper_id,
        )
    ).scalar_one_or_none()


def assign_clipper(db: Session, caller: Caller, campaign_id: UUID, clipper_id: UUID) -> ActionResult:
    """Admin: allow a clipper to submit to a campaign."""
    if not caller.is_admin:
        return ActionResult(error="Unauthorized")

    if db.get(Campaign, campaign_id) is None:
        return ActionResult(error="Campaign not found")
    if db.get(ClipperProfile, clipper_id) is None:
        return ActionResult(error="Clipper profile not found")

    if get_assignment(db, campaign_id, clipper_id) is not None:
        return ActionResult(error="Clipper is already assigned to this campaign")

    with transaction(db, "assign clipper"):
        db.add(CampaignAssignment(campaign_id=campaign_id, clipper_id=clipper_id))

    logger.info(f"Clipper {clipper_id} assigned to campaign {campaign_id}")
    return ActionResult(success=True)
