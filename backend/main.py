"""
Creator Rewards service — FastAPI application.

Wires the eligibility engine, the repository and the rewards aggregates
into an HTTP API:

  Participants
    POST /api/participants/register          register + channels
    GET  /api/participants/search?q=         search by name / handle
    GET  /api/participants/{participant_id}  recompute + full detail
    GET  /api/dashboard/{token}              same detail, by dashboard token

  Public aggregates
    GET  /api/leaderboard?platform=&exclude_zero_views=
    GET  /api/robux                          budget stats
    GET  /api/robux/platforms                per-platform breakdown

  Admin (X-Admin-Token header)
    GET    /api/admin/videos                 paginated video list
    POST   /api/admin/override-eligibility   force a verdict
    DELETE /api/admin/override-eligibility/{video_id}
    POST   /api/admin/recompute              full-corpus recompute
    GET    /api/admin/export?format=xlsx|csv

  Cron
    POST /api/cron/sync-videos               run the configured SyncJob

Error handling:
  - Unknown participant / video → 404
  - Bad input → 400
  - Missing / wrong admin token or cron secret → 401
  - No sync job configured → 503
"""

import os
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse
from sqlalchemy.orm import Session

import config
from models.db import Participant, get_db, init_db
from models.schemas import (
    OverrideRequest,
    RegisterRequest,
    RegisterResponse,
)
from services import repository
from services.channels import extract_tiktok_handle, extract_youtube_channel_id
from services.excel_export import generate_report, videos_to_csv
from services.repository import NotFoundError
from services.rewards import (
    PLATFORMS,
    build_leaderboard,
    calculate_budget_stats,
    calculate_participant_robux,
    calculate_platform_breakdown,
)
from services.sync import SyncJob

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Creator Rewards",
    description="Video eligibility, Robux rewards and leaderboard for the creator program",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Platform fetchers are wired in by the deployment (see configure_sync_job)
app.state.sync_job = None


def configure_sync_job(job: Optional[SyncJob]) -> None:
    app.state.sync_job = job


@app.on_event("startup")
async def startup_event():
    config.validate_config()
    init_db()
    os.makedirs(config.OUTPUT_DIR, exist_ok=True)
    logger.info("Startup complete: configuration validated, tables ready")


# ===========================================================================
# Helpers
# ===========================================================================

def _error(status_code: int, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"status": "error", "message": message},
    )


def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> str:
    """Opaque admin capability: the configured ADMIN_TOKEN must match."""
    if not config.ADMIN_TOKEN or x_admin_token != config.ADMIN_TOKEN:
        raise _error(401, "Unauthorized")
    return "admin"


def get_sync_job(request: Request) -> Optional[SyncJob]:
    return request.app.state.sync_job


def _validate_platform(platform: Optional[str]) -> Optional[str]:
    if platform and platform not in PLATFORMS:
        raise _error(400, 'Invalid platform. Must be "tiktok" or "youtube"')
    return platform or None


def _participant_detail(participant: Participant) -> dict:
    record = repository.to_participant_record(participant)
    robux = calculate_participant_robux(record)
    videos = [v for c in record.channels for v in c.videos]
    return {
        "participant": {
            "id": record.participant_id,
            "display_name": record.display_name,
            "discord_username": record.discord_username,
            "avatar_url": record.avatar_url,
        },
        "channels": [c.model_dump(mode="json") for c in record.channels],
        "total_views": sum(v.views for v in videos),
        "eligible_videos_count": robux.eligible_videos_count,
        "robux_earned": robux.robux_earned,
    }


def _recompute_and_reload(db: Session, participant: Participant) -> Participant:
    report = repository.recompute_eligibility(db, participant_id=participant.id)
    if report.errors:
        logger.warning(
            f"Participant {participant.id}: {report.errors} verdict(s) failed to persist"
        )
    db.expire_all()
    return repository.get_participant(db, participant.id)


# ===========================================================================
# Participants
# ===========================================================================

@app.post("/api/participants/register", response_model=RegisterResponse)
def register_participant(request: RegisterRequest, db: Session = Depends(get_db)):
    tiktok_input = (request.tiktok_handle or "").strip()
    youtube_input = (request.youtube_channel or "").strip()

    if not request.display_name.strip():
        raise _error(400, "Display name is required")
    if not tiktok_input and not youtube_input:
        raise _error(400, "At least one platform (TikTok or YouTube) is required")

    tiktok_handle = extract_tiktok_handle(tiktok_input) if tiktok_input else None
    youtube_channel_id = extract_youtube_channel_id(youtube_input) if youtube_input else None

    if not tiktok_handle and not youtube_channel_id:
        raise _error(
            400,
            "Could not extract valid channel information. Please check your URLs/handles.",
        )

    participant = repository.create_participant(
        db,
        display_name=request.display_name,
        email=request.email,
        discord_username=request.discord_username,
        tiktok_handle=tiktok_handle,
        youtube_channel_id=youtube_channel_id,
    )

    return RegisterResponse(
        status="success",
        participant_id=participant.id,
        display_name=participant.display_name,
        dashboard_token=participant.dashboard_token,
        dashboard_url=f"{config.APP_BASE_URL.rstrip('/')}/p/{participant.dashboard_token}",
    )


@app.get("/api/participants/search")
def search_participants(q: str = "", db: Session = Depends(get_db)):
    results = repository.search_participants(db, q)
    return {
        "participants": [
            {
                "id": p.id,
                "display_name": p.display_name,
                "discord_username": p.discord_username,
                "channels": [
                    {
                        "platform": c.platform,
                        "handle": c.handle,
                        "channel_id": c.platform_channel_id,
                    }
                    for c in p.channels
                ],
            }
            for p in results
        ]
    }


@app.get("/api/participants/{participant_id}")
def get_participant(participant_id: str, db: Session = Depends(get_db)):
    try:
        participant = repository.get_participant(db, participant_id)
    except NotFoundError:
        raise _error(404, "Participant not found")
    return _participant_detail(_recompute_and_reload(db, participant))


@app.get("/api/dashboard/{token}")
def get_dashboard(token: str, db: Session = Depends(get_db)):
    try:
        participant = repository.get_participant_by_token(db, token)
    except NotFoundError:
        raise _error(404, "Participant not found")
    return _participant_detail(_recompute_and_reload(db, participant))


# ===========================================================================
# Public aggregates
# ===========================================================================

@app.get("/api/leaderboard")
def get_leaderboard(
    platform: Optional[str] = None,
    exclude_zero_views: bool = False,
    db: Session = Depends(get_db),
):
    platform = _validate_platform(platform)
    entries = build_leaderboard(
        repository.list_participant_records(db),
        platform=platform,
        exclude_zero_views=exclude_zero_views,
    )
    return {
        "platform": platform or "combined",
        "entries": [e.model_dump(mode="json") for e in entries],
    }


@app.get("/api/robux")
def get_robux_stats(db: Session = Depends(get_db)):
    return calculate_budget_stats(repository.list_video_records(db)).model_dump()


@app.get("/api/robux/platforms")
def get_robux_by_platform(db: Session = Depends(get_db)):
    return calculate_platform_breakdown(repository.list_video_records(db)).model_dump()


# ===========================================================================
# Admin
# ===========================================================================

@app.get("/api/admin/videos")
def admin_list_videos(
    platform: Optional[str] = None,
    eligible: Optional[bool] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
):
    platform = _validate_platform(platform)
    videos, total = repository.list_videos_page(
        db, platform=platform, eligible=eligible, page=page, limit=limit,
    )
    limit = max(min(limit, 200), 1)
    return {
        "videos": [
            {
                **repository.to_video_record(v).model_dump(mode="json"),
                "participant_id": v.channel.participant.id,
                "display_name": v.channel.participant.display_name,
                "verdict": v.eligibility.verdict().model_dump(mode="json") if v.eligibility else None,
            }
            for v in videos
        ],
        "pagination": {
            "page": max(page, 1),
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@app.post("/api/admin/override-eligibility")
def admin_override_eligibility(
    request: OverrideRequest,
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    try:
        row = repository.apply_admin_override(
            db, request.video_id, request.is_eligible, overridden_by=admin,
        )
    except NotFoundError:
        raise _error(404, "Video not found")
    return {
        "status": "success",
        "eligibility": {
            "video_id": row.video_id,
            "is_eligible": row.is_eligible,
            "reasons": list(row.reasons),
            "eligible_robux": row.eligible_robux,
            "verdict": row.verdict().model_dump(mode="json"),
        },
    }


@app.delete("/api/admin/override-eligibility/{video_id}")
def admin_clear_override(
    video_id: str,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
):
    try:
        row = repository.clear_admin_override(db, video_id)
    except NotFoundError:
        raise _error(404, "Video not found")
    return {
        "status": "success",
        "eligibility": {
            "video_id": row.video_id,
            "is_eligible": row.is_eligible,
            "reasons": list(row.reasons),
            "eligible_robux": row.eligible_robux,
            "verdict": row.verdict().model_dump(mode="json"),
        },
    }


@app.post("/api/admin/recompute")
def admin_recompute(db: Session = Depends(get_db), _admin: str = Depends(require_admin)):
    report = repository.recompute_eligibility(db)
    return {"status": "success", **report.model_dump()}


@app.get("/api/admin/export")
def admin_export(
    export_format: str = Query(default="xlsx", alias="format"),
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
):
    participants = repository.list_participant_records(db)

    if export_format == "csv":
        return PlainTextResponse(
            videos_to_csv(participants),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="video_eligibility.csv"'},
        )
    if export_format != "xlsx":
        raise _error(400, 'Invalid format. Must be "xlsx" or "csv"')

    video_records = [v for p in participants for c in p.channels for v in c.videos]
    filepath = generate_report(
        participants=participants,
        leaderboard=build_leaderboard(participants),
        budget=calculate_budget_stats(video_records),
        breakdown=calculate_platform_breakdown(video_records),
    )
    filename = os.path.basename(filepath)
    return FileResponse(
        filepath,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ===========================================================================
# Cron
# ===========================================================================

@app.post("/api/cron/sync-videos")
def cron_sync_videos(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    job: Optional[SyncJob] = Depends(get_sync_job),
):
    if config.CRON_SECRET and authorization != f"Bearer {config.CRON_SECRET}":
        raise _error(401, "Unauthorized")
    if job is None:
        raise _error(503, "No content fetchers configured")

    report = job.run(db)
    return {"status": "success", **report.model_dump()}


# ===========================================================================
# Main entry point
# ===========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
