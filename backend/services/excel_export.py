"""
Excel report for a payout batch.

Creates a 2-tab .xlsx file:
  Tab 1: "Clipper Payouts", one row per ClipperPayout in the batch
  Tab 2: "Clip Audit", one row per clip paid by the batch

File naming: "Clipper Payout Batch {period_start} to {period_end}.xlsx"

Formatting:
  - Bold, centered header rows on both tabs
  - Header row frozen
  - Currency format for amount columns ($#,##0.00)
  - Comma-separated number format for view counts (#,##0)
  - Column widths fitted to content, within MIN/MAX_COL_WIDTH
"""

import os
import logging
from datetime import datetime
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font, Alignment
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

import config
from models.tables import Clip, ClipperPayout, PayoutBatch

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MIN_COL_WIDTH = 10
MAX_COL_WIDTH = 60
HEADER_FONT = Font(bold=True)
CURRENCY_FORMAT = '$#,##0.00'
NUMBER_FORMAT = '#,##0'

PAYOUT_HEADERS = [
    "Clipper Name",
    "Tier",
    "Clips",
    "Total Views",
    "Bonus",
    "Amount",
    "Status",
    "Paid At",
]

AUDIT_HEADERS = [
    "Clipper Name",
    "Campaign",
    "Post URL",
    "Posted At",
    "Views",
    "Likes",
    "Payout Amount",
    "Metrics Updated At",
]


# ===========================================================================
# Public API
# ===========================================================================

def generate_batch_report(
    batch: PayoutBatch,
    payouts: list[ClipperPayout],
    clips: list[Clip],
    output_dir: Optional[str] = None,
) -> str:
    """
    Write the .xlsx report for one batch.

    Args:
        batch:      The batch (period bounds name the file)
        payouts:    The batch's ClipperPayout rows, clipper relation loaded
        clips:      Clips paid by the batch, clipper and campaign loaded
        output_dir: Target directory (defaults to config.OUTPUT_DIR)

    Returns:
        Path of the generated file.
    """
    output_dir = output_dir or config.OUTPUT_DIR
    os.makedirs(output_dir, exist_ok=True)

    filename = (
        f"Clipper Payout Batch "
        f"{batch.period_start.date().isoformat()} to {batch.period_end.date().isoformat()}.xlsx"
    )
    filepath = os.path.join(output_dir, filename)

    logger.info(f"Generating batch report: {filepath}")

    wb = Workbook()

    ws1 = wb.active
    ws1.title = "Clipper Payouts"
    _build_payouts_tab(ws1, payouts)

    ws2 = wb.create_sheet("Clip Audit")
    _build_audit_tab(ws2, clips)

    wb.save(filepath)
    logger.info(
        f"Report saved: {filepath} ({len(payouts)} payouts, {len(clips)} clips)"
    )
    return filepath


# ===========================================================================
# Tab 1: Clipper Payouts
# ===========================================================================

def _build_payouts_tab(ws: Worksheet, payouts: list[ClipperPayout]) -> None:
    """One row per clipper, sorted by amount descending."""
    ws.append(PAYOUT_HEADERS)

    for payout in sorted(payouts, key=lambda p: p.amount, reverse=True):
        clipper = payout.clipper
        ws.append([
            clipper.display_name if clipper else "Unknown",
            clipper.tier if clipper else None,
            payout.clips_count,
            payout.total_views,
            float(payout.bonus_amount or 0),
            float(payout.amount),
            payout.status,
            _format_datetime(payout.paid_at),
        ])

    _format_header_row(ws)
    _freeze_top_row(ws)

    for col_idx in (3, 4):
        _apply_column_format(ws, col_idx=col_idx, fmt=NUMBER_FORMAT)
    for col_idx in (5, 6):
        _apply_column_format(ws, col_idx=col_idx, fmt=CURRENCY_FORMAT)

    _auto_fit_columns(ws)


# ===========================================================================
# Tab 2: Clip Audit
# ===========================================================================

def _build_audit_tab(ws: Worksheet, clips: list[Clip]) -> None:
    """One row per paid clip, sorted by clipper name then posted_at."""
    ws.append(AUDIT_HEADERS)

    rows = sorted(
        clips,
        key=lambda c: (
            c.clipper.display_name if c.clipper else "",
            c.posted_at or datetime.max,
        ),
    )
    for clip in rows:
        ws.append([
            clip.clipper.display_name if clip.clipper else "Unknown",
            clip.campaign.name if clip.campaign else None,
            clip.platform_post_url,
            _format_datetime(clip.posted_at),
            clip.views,
            clip.likes,
            float(clip.payout_amount) if clip.payout_amount is not None else None,
            _format_datetime(clip.metrics_updated_at),
        ])

    _format_header_row(ws)
    _freeze_top_row(ws)

    for col_idx in (5, 6):
        _apply_column_format(ws, col_idx=col_idx, fmt=NUMBER_FORMAT)
    _apply_column_format(ws, col_idx=7, fmt=CURRENCY_FORMAT)

    _auto_fit_columns(ws)


# ===========================================================================
# Formatting helpers
# ===========================================================================

def _format_header_row(ws: Worksheet) -> None:
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")


def _freeze_top_row(ws: Worksheet) -> None:
    ws.freeze_panes = "A2"


def _apply_column_format(ws: Worksheet, col_idx: int, fmt: str, start_row: int = 2) -> None:
    """Apply a number format to every non-empty data cell of a 1-based column."""
    for row in range(start_row, ws.max_row + 1):
        cell = ws.cell(row=row, column=col_idx)
        if cell.value is not None:
            cell.number_format = fmt


def _auto_fit_columns(ws: Worksheet) -> None:
    """Size each column to its widest value plus 2 chars, clamped to MIN/MAX."""
    for col_idx in range(1, ws.max_column + 1):
        widest = max(
            (
                len(str(ws.cell(row=row, column=col_idx).value))
                for row in range(1, ws.max_row + 1)
                if ws.cell(row=row, column=col_idx).value is not None
            ),
            default=0,
        )
        width = min(max(widest + 2, MIN_COL_WIDTH), MAX_COL_WIDTH)
        ws.column_dimensions[get_column_letter(col_idx)].width = width


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%d %H:%M:%S")
