"""
Clipper Payout Platform: FastAPI application.

Thin HTTP layer over the service modules. Every endpoint:
  1. Resolves the caller (admin token + optional X-User-Id)
  2. Calls one service operation with a request-scoped session
  3. Maps the result model to a response, or to an HTTPException

Endpoints:
  POST   /api/payouts/batches                    generate a draft payout batch
  POST   /api/payouts/batches/{batch_id}/paid    pay every pending payout, complete batch
  DELETE /api/payouts/batches/{batch_id}         delete a draft batch
  GET    /api/payouts/batches/{batch_id}/report  .xlsx report for a batch
  POST   /api/payouts/{payout_id}/paid           pay one clipper payout

  POST   /api/clips                              submit a clip
  GET    /api/clips/check-duplicate?url=         has this URL been submitted?
  POST   /api/clips/scan-duplicates              flag duplicate clips
  POST   /api/clips/{clip_id}/approve
  POST   /api/clips/{clip_id}/reject
  POST   /api/clips/{clip_id}/refresh-metrics

  GET    /api/campaigns/{campaign_id}/export     clips as CSV
  POST   /api/campaigns/{campaign_id}/clippers/{clipper_id}  assign a clipper

  GET    /api/settings/payout | /api/settings/tier
  PUT    /api/settings/payout | /api/settings/tier

  GET    /api/cron/refresh-metrics               scheduler hook (Bearer CRON_SECRET when set)

Error handling:
  - "Unauthorized"                      → 401
  - "... not found ..."                 → 404
  - already paid / not a draft / etc.   → 409
  - any other business-rule failure     → 400
  - PersistenceError                    → 500 (generic message, details in logs)
"""

import os
import secrets
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

import config
from database import PersistenceError, get_db, init_db
from models.schemas import (
    ActionResult,
    Caller,
    ClipMetricsResult,
    DuplicateCheckResult,
    DuplicateScanResult,
    GenerateBatchRequest,
    GenerateBatchResult,
    MarkPaidResult,
    PayoutSettings,
    PayoutSettingsUpdate,
    RefreshResult,
    RejectClipRequest,
    SubmitClipRequest,
    SubmitClipResult,
    TierSettings,
    TierSettingsUpdate,
)
from models.tables import Campaign, Clip, ClipperPayout, ClipperProfile, PayoutBatch
from services.batch_lifecycle import delete_batch, mark_batch_as_paid, mark_payout_as_paid
from services.campaign_assignments import assign_clipper
from services.campaign_export import export_campaign_clips_csv
from services.clips import approve_clip, refresh_clip_metrics, reject_clip, submit_clip
from services.duplicates import check_duplicate_url, scan_for_duplicates
from services.excel_export import generate_batch_report
from services.metrics_refresher import refresh_stale_metrics
from services.payout import generate_payout_batch
from services.settings import (
    get_payout_settings,
    get_tier_settings,
    update_payout_settings,
    update_tier_settings,
)

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Result errors that mean "valid request, wrong state" rather than "bad input"
CONFLICT_MARKERS = ("already", "can only delete", "cannot approve", "cannot reject")

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Clipper Payout Platform",
    description="Pays clippers for the views their campaign clips earn",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    init_db()
    os.makedirs(config.OUTPUT_DIR, exist_ok=True)
    logger.info("Database tables verified, output directory ready")


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": {"status": "error", "message": "Internal database error"}},
    )


# ===========================================================================
# Caller resolution and result mapping
# ===========================================================================

def get_caller(
    authorization: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> Caller:
    """
    Admin  = `Authorization: Bearer <ADMIN_API_TOKEN>` (never when the token is unset).
    User   = `X-User-Id: <uuid>`, optional for admins.
    """
    is_admin = _bearer_matches(authorization, config.ADMIN_API_TOKEN)

    user_id = None
    if x_user_id:
        try:
            user_id = UUID(x_user_id)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail={"status": "error", "message": "X-User-Id must be a UUID"},
            )

    return Caller(user_id=user_id, is_admin=is_admin)


def _bearer_matches(authorization: Optional[str], secret: str) -> bool:
    if not secret or not authorization:
        return False
    return secrets.compare_digest(authorization, f"Bearer {secret}")


def _error_status(message: str) -> int:
    if message == "Unauthorized":
        return 401
    lowered = message.lower()
    if "not found" in lowered:
        return 404
    if any(marker in lowered for marker in CONFLICT_MARKERS):
        return 409
    return 400


def _unwrap(result: ActionResult) -> ActionResult:
    """Return a successful result unchanged; raise HTTPException for a failed one."""
    if result.success:
        return result
    message = result.error or "Request failed"
    raise HTTPException(
        status_code=_error_status(message),
        detail={"status": "error", "message": message},
    )


def _require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise HTTPException(
            status_code=401,
            detail={"status": "error", "message": "Unauthorized"},
        )


# ===========================================================================
# Payout batches
# ===========================================================================

@app.post("/api/payouts/batches", response_model=GenerateBatchResult)
def create_payout_batch(
    request: GenerateBatchRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    result = generate_payout_batch(db, caller, request.period_start, request.period_end)
    return _unwrap(result)


@app.post("/api/payouts/batches/{batch_id}/paid", response_model=MarkPaidResult)
def pay_batch(
    batch_id: UUID,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return _unwrap(mark_batch_as_paid(db, caller, batch_id))


@app.delete("/api/payouts/batches/{batch_id}", response_model=ActionResult)
def remove_batch(
    batch_id: UUID,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return _unwrap(delete_batch(db, caller, batch_id))


@app.post("/api/payouts/{payout_id}/paid", response_model=MarkPaidResult)
def pay_clipper_payout(
    payout_id: UUID,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return _unwrap(mark_payout_as_paid(db, caller, payout_id))


@app.get("/api/payouts/batches/{batch_id}/report")
def download_batch_report(
    batch_id: UUID,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Build the batch's .xlsx report and serve it as a download."""
    _require_admin(caller)

    batch = db.get(PayoutBatch, batch_id)
    if batch is None:
        raise HTTPException(
            status_code=404,
            detail={"status": "error", "message": "Batch not found"},
        )

    payouts = db.execute(
        select(ClipperPayout)
        .options(selectinload(ClipperPayout.clipper).selectinload(ClipperProfile.user))
        .where(ClipperPayout.batch_id == batch_id)
    ).scalars().all()

    clips = db.execute(
        select(Clip)
        .options(
            selectinload(Clip.clipper).selectinload(ClipperProfile.user),
            selectinload(Clip.campaign),
        )
        .where(Clip.payout_batch_id == batch_id)
    ).scalars().all()

    filepath = generate_batch_report(batch, list(payouts), list(clips))
    filename = os.path.basename(filepath)

    return FileResponse(
        filepath,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ===========================================================================
# Clips
# ===========================================================================

@app.post("/api/clips", response_model=SubmitClipResult)
def create_clip(
    request: SubmitClipRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    result = submit_clip(db, caller, request.campaign_id, request.platform_post_url)
    if result.is_duplicate:
        raise HTTPException(
            status_code=409,
            detail={
                "status": "error",
                "message": result.error,
                "existing_clip_id": str(result.existing_clip_id),
            },
        )
    return _unwrap(result)


@app.get("/api/clips/check-duplicate", response_model=DuplicateCheckResult)
def check_duplicate(
    url: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    if caller.user_id is None:
        _require_admin(caller)
    return check_duplicate_url(db, url)


@app.post("/api/clips/scan-duplicates", response_model=DuplicateScanResult)
def scan_duplicates(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return _unwrap(scan_for_duplicates(db, caller))


@app.post("/api/clips/{clip_id}/approve", response_model=ActionResult)
def approve(
    clip_id: UUID,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return _unwrap(approve_clip(db, caller, clip_id))


@app.post("/api/clips/{clip_id}/reject", response_model=ActionResult)
def reject(
    clip_id: UUID,
    request: RejectClipRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return _unwrap(reject_clip(db, caller, clip_id, request.reason))


@app.post("/api/clips/{clip_id}/refresh-metrics", response_model=ClipMetricsResult)
def refresh_metrics_for_clip(
    clip_id: UUID,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    result = refresh_clip_metrics(db, caller, clip_id)
    if not result.success and result.error == "Failed to fetch tweet data":
        raise HTTPException(
            status_code=502,
            detail={"status": "error", "message": result.error},
        )
    return _unwrap(result)


# ===========================================================================
# Campaigns
# ===========================================================================

@app.get("/api/campaigns/{campaign_id}/export")
def export_campaign(
    campaign_id: UUID,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    _require_admin(caller)

    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise HTTPException(
            status_code=404,
            detail={"status": "error", "message": "Campaign not found"},
        )

    csv_text = export_campaign_clips_csv(db, campaign_id)
    filename = f"{campaign.name.replace(' ', '_')}_clips.csv"
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/campaigns/{campaign_id}/clippers/{clipper_id}", response_model=ActionResult)
def add_clipper_to_campaign(
    campaign_id: UUID,
    clipper_id: UUID,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return _unwrap(assign_clipper(db, caller, campaign_id, clipper_id))


# ===========================================================================
# Settings
# ===========================================================================

@app.get("/api/settings/payout", response_model=PayoutSettings)
def read_payout_settings(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    _require_admin(caller)
    return get_payout_settings(db)


@app.put("/api/settings/payout", response_model=ActionResult)
def write_payout_settings(
    request: PayoutSettingsUpdate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return _unwrap(update_payout_settings(db, caller, request))


@app.get("/api/settings/tier", response_model=TierSettings)
def read_tier_settings(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    _require_admin(caller)
    return get_tier_settings(db)


@app.put("/api/settings/tier", response_model=ActionResult)
def write_tier_settings(
    request: TierSettingsUpdate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return _unwrap(update_tier_settings(db, caller, request))


# ===========================================================================
# Scheduler hook
# ===========================================================================

@app.get("/api/cron/refresh-metrics", response_model=RefreshResult)
def cron_refresh_metrics(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    """
    Refresh stale clip metrics. Called by an external scheduler.

    When CRON_SECRET is set the request must carry `Bearer <CRON_SECRET>`;
    with no secret configured the hook is open.
    """
    if config.CRON_SECRET and not _bearer_matches(authorization, config.CRON_SECRET):
        raise HTTPException(
            status_code=401,
            detail={"status": "error", "message": "Unauthorized"},
        )
    return refresh_stale_metrics(db)


# ===========================================================================
# Main entry point
# ===========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
