"""
Payout batch lifecycle: mark paid, mark batch paid, delete draft batch.

State machine:
  PayoutBatch:    draft --mark_batch_as_paid--> completed
                  draft --delete_batch--> (removed)
  ClipperPayout:  pending --mark paid--> paid
  Clip:           paid --delete_batch (batch still draft, nothing paid)--> approved

Every operation locks the batch row (FOR UPDATE) before reading its state,
so paying and deleting the same batch never interleave.

Paid transitions are conditional updates (`... WHERE status = 'pending'`),
and the clipper's lifetime earnings are only incremented when that update
actually changed a row. Marking the same payout twice is therefore a no-op
the second time, and total_earnings always equals the sum of the clipper's
paid payout amounts.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from database import transaction
from models.schemas import ActionResult, Caller, MarkPaidResult
from models.tables import (
    CampaignAssignment,
    Clip,
    ClipperPayout,
    ClipperProfile,
    PayoutBatch,
    utcnow,
)

logger = logging.getLogger(__name__)


# ===========================================================================
# Mark a single clipper payout as paid
# ===========================================================================

def mark_payout_as_paid(db: Session, caller: Caller, payout_id: UUID) -> MarkPaidResult:
    if not caller.is_admin:
        return MarkPaidResult(error="Unauthorized")

    with transaction(db, "mark payout paid"):
        payout = db.get(ClipperPayout, payout_id)
        if payout is None:
            return MarkPaidResult(error="Payout not found")

        # Serializes with delete_batch on the parent batch
        if db.get(PayoutBatch, payout.batch_id, with_for_update=True) is None:
            return MarkPaidResult(error="Payout not found")

        credited = _transition_to_paid(db, payout)
        if credited is None:
            logger.warning(f"Payout {payout_id} is already paid: earnings not credited again")
            return MarkPaidResult(error="Payout already paid")

    logger.info(f"Payout {payout_id} marked paid, credited ${credited:,.2f}")
    return MarkPaidResult(success=True, payouts_marked=1, amount_credited=credited)


# ===========================================================================
# Mark every pending payout of a batch as paid, then complete the batch
# ===========================================================================

def mark_batch_as_paid(db: Session, caller: Caller, batch_id: UUID) -> MarkPaidResult:
    if not caller.is_admin:
        return MarkPaidResult(error="Unauthorized")

    with transaction(db, "mark batch paid"):
        batch = db.get(PayoutBatch, batch_id, with_for_update=True)
        if batch is None:
            return MarkPaidResult(error="Batch not found")

        pending = db.execute(
            select(ClipperPayout)
            .where(ClipperPayout.batch_id == batch_id, ClipperPayout.status == "pending")
            .with_for_update()
        ).scalars().all()

        marked = 0
        credited_total = Decimal("0.00")
        for payout in pending:
            credited = _transition_to_paid(db, payout)
            if credited is not None:
                marked += 1
                credited_total += credited

        if batch.status != "completed":
            batch.status = "completed"
            batch.processed_by = caller.user_id
            batch.processed_at = utcnow()

    logger.info(
        f"Batch {batch_id} completed: {marked} payout(s) marked paid, "
        f"${credited_total:,.2f} credited"
    )
    return MarkPaidResult(success=True, payouts_marked=marked, amount_credited=credited_total)


# ===========================================================================
# Delete a draft batch, reverting its clips to approved
# ===========================================================================

def delete_batch(db: Session, caller: Caller, batch_id: UUID) -> ActionResult:
    """
    Remove a draft batch and everything it touched.

    Only drafts with no paid payout can be deleted: a paid payout has
    already been credited to the clipper, and there is no "unpay" path.
    The batch row is locked first, so a concurrent paid transition on the
    same batch either finishes before the check or waits for the delete.
    """
    if not caller.is_admin:
        return ActionResult(error="Unauthorized")

    with transaction(db, "delete batch"):
        batch = db.get(PayoutBatch, batch_id, with_for_update=True)
        if batch is None:
            return ActionResult(error="Batch not found")

        if batch.status != "draft":
            logger.warning(f"Refusing to delete batch {batch_id} in status '{batch.status}'")
            return ActionResult(error="Can only delete draft batches")

        paid_payouts = db.execute(
            select(func.count(ClipperPayout.id)).where(
                ClipperPayout.batch_id == batch_id,
                ClipperPayout.status == "paid",
            )
        ).scalar_one()
        if paid_payouts:
            logger.warning(f"Refusing to delete batch {batch_id}: {paid_payouts} payout(s) already paid")
            return ActionResult(error="Batch already has paid payouts")

        _release_campaign_earnings(db, batch_id)

        reverted = db.execute(
            update(Clip)
            .where(Clip.payout_batch_id == batch_id)
            .values(
                payout_amount=None,
                payout_batch_id=None,
                status="approved",
                updated_at=utcnow(),
            )
        ).rowcount

        removed_payouts = db.execute(
            delete(ClipperPayout).where(ClipperPayout.batch_id == batch_id)
        ).rowcount

        db.delete(batch)

    logger.info(
        f"Batch {batch_id} deleted: {reverted} clip(s) reverted to approved, "
        f"{removed_payouts} payout row(s) removed"
    )
    return ActionResult(success=True)


def _release_campaign_earnings(db: Session, batch_id: UUID) -> None:
    """Subtract the batch's clip payouts from each clipper's earned-in-campaign total."""
    batched = db.execute(
        select(Clip.clipper_id, Clip.campaign_id, func.sum(Clip.payout_amount))
        .where(
            Clip.payout_batch_id == batch_id,
            Clip.clipper_id.is_not(None),
            Clip.campaign_id.is_not(None),
        )
        .group_by(Clip.clipper_id, Clip.campaign_id)
    ).all()

    for clipper_id, campaign_id, amount in batched:
        assignment = db.execute(
            select(CampaignAssignment)
            .where(
                CampaignAssignment.clipper_id == clipper_id,
                CampaignAssignment.campaign_id == campaign_id,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if assignment is None:
            continue

        current = assignment.total_earned_in_campaign or Decimal("0.00")
        assignment.total_earned_in_campaign = max(
            Decimal("0.00"), current - Decimal(str(amount or 0))
        )


# ===========================================================================
# Guarded paid transition
# ===========================================================================

def _transition_to_paid(db: Session, payout: ClipperPayout) -> Optional[Decimal]:
    """
    pending → paid, then credit the clipper.

    Returns:
        The amount credited, or None if the payout was not pending
        (another call already paid it).
    """
    now = utcnow()
    amount = payout.amount

    result = db.execute(
        update(ClipperPayout)
        .where(ClipperPayout.id == payout.id, ClipperPayout.status == "pending")
        .values(status="paid", paid_at=now)
    )
    if result.rowcount == 0:
        return None

    if payout.clipper_id is not None:
        db.execute(
            update(ClipperProfile)
            .where(ClipperProfile.id == payout.clipper_id)
            .values(
                total_earnings=ClipperProfile.total_earnings + amount,
                updated_at=now,
            )
        )

    return amount
