"""
Clip duplicate detection by submission URL.

Two entry points:
  - scan_for_duplicates(): batch scan over every clip. Flags duplicates,
    never unflags anything.
  - check_duplicate_url(): read-only lookup used while a clipper is
    submitting, to warn before a duplicate is created.

Matching is on the exact platform_post_url string: case-sensitive, with no
trailing-slash or query-string normalization. Two URLs that differ only by
"?s=20" are treated as different posts.

Canonical clip = earliest created_at in the URL group (ties broken by id).
Since created_at never changes, the canonical clip of a group never
changes either, and re-running the scan finds nothing new.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from database import transaction
from models.schemas import Caller, DuplicateCheckResult, DuplicateScanResult
from models.tables import Clip, ClipperProfile

logger = logging.getLogger(__name__)


# ===========================================================================
# Pure grouping
# ===========================================================================

def group_by_url(clips: Iterable[Clip]) -> dict[str, list[Clip]]:
    """Group clips by exact submission URL. Clips with an empty URL are ignored."""
    groups: dict[str, list[Clip]] = {}
    for clip in clips:
        if not clip.platform_post_url:
            continue
        groups.setdefault(clip.platform_post_url, []).append(clip)
    return groups


def find_duplicates(clips: Iterable[Clip]) -> list[tuple[Clip, Clip]]:
    """
    Find every (duplicate, canonical) pair.

    Within each URL group of size > 1, the oldest clip is canonical and
    every other clip is its duplicate: whether or not it is already flagged.
    """
    pairs: list[tuple[Clip, Clip]] = []

    for url, group in group_by_url(clips).items():
        if len(group) < 2:
            continue

        ordered = sorted(group, key=_canonical_sort_key)
        canonical = ordered[0]
        for clip in ordered[1:]:
            pairs.append((clip, canonical))

        logger.debug(
            f"URL group {url}: canonical={canonical.id}, "
            f"{len(ordered) - 1} duplicate(s)"
        )

    return pairs


def _canonical_sort_key(clip: Clip) -> tuple[datetime, str]:
    return (clip.created_at or datetime.min, str(clip.id))


# ===========================================================================
# Batch scan
# ===========================================================================

def scan_for_duplicates(db: Session, caller: Caller) -> DuplicateScanResult:
    """
    Flag every clip whose URL was already submitted by an older clip.

    Returns:
        DuplicateScanResult with duplicates_found = number of clips flagged
        by THIS run (already-flagged clips are not counted again).
    """
    if not caller.is_admin:
        return DuplicateScanResult(error="Unauthorized")

    with transaction(db, "scan for duplicates"):
        clips = db.execute(select(Clip)).scalars().all()
        pairs = find_duplicates(clips)

        newly_flagged = 0
        for duplicate, canonical in pairs:
            if duplicate.is_duplicate:
                continue
            duplicate.is_duplicate = True
            duplicate.duplicate_of_clip_id = canonical.id
            newly_flagged += 1

            logger.info(
                f"Flagged clip {duplicate.id} as duplicate of {canonical.id} "
                f"({duplicate.platform_post_url})"
            )

    logger.info(
        f"Duplicate scan complete: {len(clips)} clips scanned, "
        f"{len(pairs)} duplicate(s) total, {newly_flagged} newly flagged"
    )
    return DuplicateScanResult(success=True, duplicates_found=newly_flagged)


# ===========================================================================
# Real-time check during submission
# ===========================================================================

def check_duplicate_url(db: Session, url: str) -> DuplicateCheckResult:
    """Report whether a URL was already submitted, and by whom. Writes nothing."""
    existing: Optional[Clip] = db.execute(
        select(Clip)
        .options(selectinload(Clip.clipper).selectinload(ClipperProfile.user))
        .where(Clip.platform_post_url == url)
        .order_by(Clip.created_at, Clip.id)
        .limit(1)
    ).scalar_one_or_none()

    if existing is None:
        return DuplicateCheckResult(is_duplicate=False)

    clipper_name = existing.clipper.display_name if existing.clipper else "Unknown"
    return DuplicateCheckResult(
        is_duplicate=True,
        clip_id=existing.id,
        clipper_name=clipper_name,
        submitted_at=existing.created_at,
    )
