"""
Admin export of the rewards program state.

Creates a 3-tab .xlsx file:
  Tab 1: "Leaderboard"        — one row per participant (from LeaderboardEntry)
  Tab 2: "Video Eligibility"  — one row per video with its verdict and reasons
  Tab 3: "Budget"             — spent / remaining / per-platform breakdown

File naming: "Rewards Report {YYYY-MM-DD HHMMSS}.xlsx" (UTC)

Formatting:
  - Bold header rows on all tabs
  - Auto-fit column widths (with min/max constraints)
  - Freeze top row (header) on all tabs
  - Comma-separated number format for views and Robux (#,##0)

The same video rows are available as CSV via videos_to_csv().
"""

import os
import logging
from datetime import datetime, timezone
from typing import Optional

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

import config
from models.schemas import (
    BudgetStats,
    LeaderboardEntry,
    ParticipantRecord,
    PlatformBreakdown,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MIN_COL_WIDTH = 10
MAX_COL_WIDTH = 60
HEADER_FONT = Font(bold=True)
NUMBER_FORMAT = '#,##0'

VIDEO_COLUMNS = [
    "Participant",
    "Platform",
    "Channel",
    "Title",
    "Video Link",
    "Published At (UTC)",
    "Views",
    "Eligible",
    "Robux",
    "Admin Override",
    "Reasons",
]


# ===========================================================================
# Public API
# ===========================================================================

def generate_report(
    participants: list[ParticipantRecord],
    leaderboard: list[LeaderboardEntry],
    budget: BudgetStats,
    breakdown: PlatformBreakdown,
    output_dir: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """
    Generate the .xlsx rewards report.

    Returns:
        Absolute file path of the generated report.
    """
    if output_dir is None:
        output_dir = config.OUTPUT_DIR
    if generated_at is None:
        generated_at = datetime.now(timezone.utc)

    os.makedirs(output_dir, exist_ok=True)

    filename = f"Rewards Report {generated_at.strftime('%Y-%m-%d %H%M%S')}.xlsx"
    filepath = os.path.abspath(os.path.join(output_dir, filename))

    logger.info(f"Generating report: {filepath}")

    wb = Workbook()

    ws1 = wb.active
    ws1.title = "Leaderboard"
    _build_leaderboard_tab(ws1, leaderboard)

    ws2 = wb.create_sheet("Video Eligibility")
    _build_videos_tab(ws2, participants)

    ws3 = wb.create_sheet("Budget")
    _build_budget_tab(ws3, budget, breakdown)

    wb.save(filepath)
    logger.info(
        f"Report saved: {filepath} "
        f"({len(leaderboard)} leaderboard rows, "
        f"{sum(len(c.videos) for p in participants for c in p.channels)} videos)"
    )

    return filepath


def video_rows(participants: list[ParticipantRecord]) -> list[list]:
    """Flatten participants → channels → videos into export rows."""
    rows = []
    for p in participants:
        for c in p.channels:
            channel_label = c.handle or c.platform_channel_id or c.channel_id
            for v in sorted(c.videos, key=_published_sort_key):
                rows.append([
                    p.display_name,
                    v.platform,
                    channel_label,
                    v.title,
                    v.url,
                    _format_datetime(v.published_at),
                    v.views,
                    "Yes" if v.is_eligible else "No",
                    v.eligible_robux,
                    "Yes" if v.overridden_by_admin else "No",
                    "; ".join(v.reasons),
                ])
    return rows


def videos_to_csv(participants: list[ParticipantRecord]) -> str:
    """Video eligibility rows as CSV text (same columns as Tab 2)."""
    df = pd.DataFrame(video_rows(participants), columns=VIDEO_COLUMNS)
    return df.to_csv(index=False)


# ===========================================================================
# Tabs
# ===========================================================================

def _build_leaderboard_tab(ws: Worksheet, leaderboard: list[LeaderboardEntry]) -> None:
    """Columns: Rank | Participant | Discord | Total Views | Eligible Posts | Robux Earned"""
    ws.append([
        "Rank",
        "Participant",
        "Discord",
        "Total Views",
        "Eligible Posts",
        "Robux Earned",
    ])

    for entry in leaderboard:
        ws.append([
            entry.rank,
            entry.display_name,
            entry.discord_username,
            entry.total_views,
            entry.eligible_posts,
            entry.robux_earned,
        ])

    _format_header_row(ws)
    _freeze_top_row(ws)
    for col_idx in [4, 5, 6]:
        _apply_column_format(ws, col_idx=col_idx, fmt=NUMBER_FORMAT)
    _auto_fit_columns(ws)


def _build_videos_tab(ws: Worksheet, participants: list[ParticipantRecord]) -> None:
    ws.append(VIDEO_COLUMNS)
    for row in video_rows(participants):
        ws.append(row)

    _format_header_row(ws)
    _freeze_top_row(ws)
    # Views (G=7), Robux (I=9)
    for col_idx in [7, 9]:
        _apply_column_format(ws, col_idx=col_idx, fmt=NUMBER_FORMAT)
    _auto_fit_columns(ws)


def _build_budget_tab(
    ws: Worksheet,
    budget: BudgetStats,
    breakdown: PlatformBreakdown,
) -> None:
    ws.append(["Metric", "Value"])
    ws.append(["Total Budget", config.TOTAL_BUDGET])
    ws.append(["Total Spent", budget.total_spent])
    ws.append(["Remaining", budget.remaining])
    ws.append(["Budget Exceeded", "Yes" if budget.budget_exceeded else "No"])
    ws.append(["TikTok Eligible Videos", breakdown.tiktok.count])
    ws.append(["TikTok Robux", breakdown.tiktok.robux])
    ws.append(["YouTube Eligible Videos", breakdown.youtube.count])
    ws.append(["YouTube Robux", breakdown.youtube.robux])

    _format_header_row(ws)
    _freeze_top_row(ws)
    _apply_column_format(ws, col_idx=2, fmt=NUMBER_FORMAT)
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


def _apply_column_format(
    ws: Worksheet,
    col_idx: int,
    fmt: str,
    start_row: int = 2,
) -> None:
    """Apply a number format to every numeric data cell in a column (1-based)."""
    for row in range(start_row, ws.max_row + 1):
        cell = ws.cell(row=row, column=col_idx)
        if isinstance(cell.value, (int, float)) and not isinstance(cell.value, bool):
            cell.number_format = fmt


def _auto_fit_columns(ws: Worksheet) -> None:
    """Width = longest value + 2, clamped to [MIN_COL_WIDTH, MAX_COL_WIDTH]."""
    for col_idx in range(1, ws.max_column + 1):
        max_length = 0
        for row in range(1, ws.max_row + 1):
            value = ws.cell(row=row, column=col_idx).value
            if value is not None:
                max_length = max(max_length, len(str(value)))

        width = min(max(max_length + 2, MIN_COL_WIDTH), MAX_COL_WIDTH)
        ws.column_dimensions[get_column_letter(col_idx)].width = width


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _published_sort_key(video) -> tuple:
    """Oldest first; videos without a publish time go last."""
    if video.published_at is None:
        return (1, datetime.min.replace(tzinfo=timezone.utc))
    return (0, video.published_at)
