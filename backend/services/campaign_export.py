"""
Campaign clip export as CSV, for handing results back to the client.

One row per clip in the campaign, newest post first.
"""

import logging
from uuid import UUID

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.tables import Clip, ClipperProfile

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "Submission URL",
    "Impressions",
    "Views",
    "Status",
    "Clipper Name",
    "Author Username",
    "Posted At",
    "Tweet Text",
    "Likes",
    "Comments",
    "Shares",
    "Payout Amount",
]


def build_campaign_clips_frame(clips: list[Clip]) -> pd.DataFrame:
    rows = []
    for clip in clips:
        rows.append({
            "Submission URL": clip.platform_post_url,
            "Impressions": clip.impressions or 0,
            "Views": clip.views or 0,
            "Status": clip.status,
            "Clipper Name": clip.clipper.display_name if clip.clipper else "Unknown",
            "Author Username": clip.author_username or "",
            "Posted At": clip.posted_at.isoformat() if clip.posted_at else "",
            "Tweet Text": clip.tweet_text or "",
            "Likes": clip.likes or 0,
            "Comments": clip.comments or 0,
            "Shares": clip.shares or 0,
            "Payout Amount": f"{clip.payout_amount:.2f}" if clip.payout_amount is not None else "",
        })
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def export_campaign_clips_csv(db: Session, campaign_id: UUID) -> str:
    """
    Returns:
        CSV text (header row always present, even for a campaign with no clips).
    """
    clips = db.execute(
        select(Clip)
        .options(selectinload(Clip.clipper).selectinload(ClipperProfile.user))
        .where(Clip.campaign_id == campaign_id)
        .order_by(Clip.posted_at.desc(), Clip.created_at.desc())
    ).scalars().all()

    df = build_campaign_clips_frame(list(clips))
    logger.info(f"Exporting {len(df)} clip(s) for campaign {campaign_id}")
    return df.to_csv(index=False)
