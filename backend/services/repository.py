"""
Persistence for participants, channels, videos and verdicts.

Everything that touches the database goes through here; the eligibility
and rewards modules only ever see pydantic snapshots.

Recompute flow (recompute_eligibility):
  1. Load every video of every channel in scope (whole channel history —
     the daily cap depends on all of a day's posts)
  2. Attach each video's stored admin override (tri-state)
  3. Run check_eligibility_for_videos
  4. Upsert one verdict row per video inside its own SAVEPOINT; a failed
     write is logged, counted and skipped, the rest of the batch continues

Admin override flow:
  apply_admin_override → store the override, recompute the owning channel
                         (a forced verdict takes or frees a daily slot)
  clear_admin_override → drop the override, recompute the owning channel
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from models.db import Channel, Participant, Video, VideoEligibility
from models.schemas import (
    ChannelRecord,
    EligibilityResult,
    FetchedVideo,
    ParticipantRecord,
    RecomputeReport,
    VideoInput,
    VideoRecord,
)
from services.channels import tiktok_profile_url, youtube_channel_url
from services.eligibility import check_eligibility_for_videos

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20


class NotFoundError(LookupError):
    """A participant, channel or video does not exist."""


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ===========================================================================
# Participants
# ===========================================================================

def create_participant(
    session: Session,
    display_name: str,
    email: Optional[str] = None,
    discord_username: Optional[str] = None,
    avatar_url: Optional[str] = None,
    tiktok_handle: Optional[str] = None,
    youtube_channel_id: Optional[str] = None,
) -> Participant:
    """Create a participant with at most one channel per platform."""
    if not tiktok_handle and not youtube_channel_id:
        raise ValueError("At least one platform (TikTok or YouTube) is required")

    participant = Participant(
        display_name=display_name.strip(),
        email=(email or "").strip() or None,
        discord_username=(discord_username or "").strip() or None,
        avatar_url=avatar_url,
    )
    if tiktok_handle:
        participant.channels.append(Channel(
            platform="tiktok",
            handle=tiktok_handle,
            url=tiktok_profile_url(tiktok_handle),
        ))
    if youtube_channel_id:
        participant.channels.append(Channel(
            platform="youtube",
            platform_channel_id=youtube_channel_id,
            url=youtube_channel_url(youtube_channel_id),
        ))

    session.add(participant)
    session.commit()
    session.refresh(participant)
    logger.info(
        f"Registered participant {participant.id} ('{participant.display_name}') "
        f"with {len(participant.channels)} channel(s)"
    )
    return participant


def _participant_query():
    return select(Participant).options(
        selectinload(Participant.channels)
        .selectinload(Channel.videos)
        .selectinload(Video.eligibility)
    )


def get_participant(session: Session, participant_id: str) -> Participant:
    participant = session.scalars(
        _participant_query().where(Participant.id == participant_id)
    ).first()
    if participant is None:
        raise NotFoundError(f"Participant not found: {participant_id}")
    return participant


def get_participant_by_token(session: Session, token: str) -> Participant:
    participant = session.scalars(
        _participant_query().where(Participant.dashboard_token == token)
    ).first()
    if participant is None:
        raise NotFoundError("Participant not found for dashboard token")
    return participant


def search_participants(session: Session, query: str, limit: int = SEARCH_LIMIT) -> list[Participant]:
    """Case-insensitive match on display name, discord username or channel handle/id."""
    query = (query or "").strip()
    if not query:
        return []

    like = f"%{query.lower()}%"
    channel_match = select(Channel.participant_id).where(
        or_(
            func.lower(Channel.handle).like(like),
            func.lower(Channel.platform_channel_id).like(like),
        )
    )
    statement = (
        select(Participant)
        .options(selectinload(Participant.channels))
        .where(
            or_(
                func.lower(Participant.display_name).like(like),
                func.lower(Participant.discord_username).like(like),
                Participant.id.in_(channel_match),
            )
        )
        .order_by(Participant.display_name, Participant.id)
        .limit(limit)
    )
    return list(session.scalars(statement).all())


# ===========================================================================
# Videos
# ===========================================================================

def get_channel(session: Session, channel_id: str) -> Channel:
    channel = session.get(Channel, channel_id)
    if channel is None:
        raise NotFoundError(f"Channel not found: {channel_id}")
    return channel


def upsert_video(session: Session, channel: Channel, fetched: FetchedVideo) -> tuple[Video, bool]:
    """
    Insert or update a video by (platform, external_video_id).

    Views never go down on re-sync: a platform briefly reporting fewer
    views keeps the stored count. A video re-reported under another channel
    of the same platform is moved to it. Does not commit.

    Returns:
        (video, created)
    """
    existing = session.scalars(
        select(Video).where(
            Video.platform == channel.platform,
            Video.external_video_id == fetched.external_video_id,
        )
    ).first()

    published_at = _to_utc(fetched.published_at)

    if existing is None:
        video = Video(
            channel_id=channel.id,
            platform=channel.platform,
            external_video_id=fetched.external_video_id,
            title=fetched.title or "",
            description=fetched.description,
            published_at=published_at,
            duration_seconds=fetched.duration_seconds,
            views=fetched.views,
            thumbnail_url=fetched.thumbnail_url,
            url=fetched.url,
            last_synced_at=_now(),
        )
        session.add(video)
        session.flush()
        return video, True

    if existing.channel_id != channel.id:
        logger.warning(
            f"  Video {existing.external_video_id} moved from channel "
            f"{existing.channel_id} to {channel.id}"
        )
        existing.channel_id = channel.id
    if fetched.views < (existing.views or 0):
        logger.debug(
            f"  Ignoring view drop for {existing.external_video_id}: "
            f"{existing.views:,} → {fetched.views:,}"
        )
    existing.title = fetched.title or ""
    existing.description = fetched.description
    existing.published_at = published_at
    existing.duration_seconds = fetched.duration_seconds
    existing.views = max(existing.views or 0, fetched.views)
    existing.thumbnail_url = fetched.thumbnail_url
    existing.url = fetched.url
    existing.last_synced_at = _now()
    session.flush()
    return existing, False


def to_video_input(video: Video) -> VideoInput:
    return VideoInput(
        id=video.id,
        platform=video.platform,
        channel_id=video.channel_id,
        title=video.title or "",
        description=video.description,
        published_at=_to_utc(video.published_at),
        duration_seconds=video.duration_seconds,
        views=video.views or 0,
        override=video.eligibility.override if video.eligibility else None,
    )


def load_videos(
    session: Session,
    participant_id: Optional[str] = None,
    channel_id: Optional[str] = None,
) -> list[Video]:
    """Every video of the channels in scope (all channels when no filter)."""
    statement = select(Video).options(selectinload(Video.eligibility))
    if channel_id is not None:
        statement = statement.where(Video.channel_id == channel_id)
    elif participant_id is not None:
        statement = statement.join(Channel).where(Channel.participant_id == participant_id)
    statement = statement.order_by(Video.published_at, Video.id)
    return list(session.scalars(statement).all())


# ===========================================================================
# Verdicts
# ===========================================================================

def _write_verdict(session: Session, video: Video, result: EligibilityResult) -> bool:
    """Upsert the verdict row. Returns True if the stored verdict changed."""
    row = video.eligibility
    if row is None:
        row = VideoEligibility(video_id=video.id)
        session.add(row)
        video.eligibility = row
    elif (
        row.is_eligible == result.is_eligible
        and list(row.reasons or []) == result.reasons
        and row.eligible_robux == result.eligible_robux
    ):
        return False

    row.is_eligible = result.is_eligible
    row.reasons = list(result.reasons)
    row.eligible_robux = result.eligible_robux
    row.computed_at = _now()
    return True


def recompute_eligibility(
    session: Session,
    participant_id: Optional[str] = None,
    channel_id: Optional[str] = None,
) -> RecomputeReport:
    """
    Recompute and persist verdicts for every video in scope.

    Scope is a whole channel, a participant's channels, or everything.
    Per-video write failures are isolated (SAVEPOINT per row) and only show
    up in the returned error count.
    """
    videos = load_videos(session, participant_id=participant_id, channel_id=channel_id)
    results = check_eligibility_for_videos([to_video_input(v) for v in videos])

    report = RecomputeReport(processed=len(videos))
    for video in videos:
        result = results[video.id]
        try:
            with session.begin_nested():
                if _write_verdict(session, video, result):
                    report.updated += 1
        except SQLAlchemyError as e:
            report.errors += 1
            logger.warning(f"Failed to persist verdict for video {video.id}: {e}")

    session.commit()

    logger.info(
        f"Recompute complete: {report.processed} processed, "
        f"{report.updated} updated, {report.errors} errors "
        f"(participant={participant_id}, channel={channel_id})"
    )
    return report


def _get_video(session: Session, video_id: str) -> Video:
    video = session.scalars(
        select(Video).options(selectinload(Video.eligibility)).where(Video.id == video_id)
    ).first()
    if video is None:
        raise NotFoundError(f"Video not found: {video_id}")
    return video


def apply_admin_override(
    session: Session,
    video_id: str,
    is_eligible: bool,
    overridden_by: str = "admin",
) -> VideoEligibility:
    """Force a verdict. Sticky across recomputes until cleared."""
    video = _get_video(session, video_id)

    row = video.eligibility
    if row is None:
        row = VideoEligibility(video_id=video.id)
        session.add(row)
        video.eligibility = row

    row.overridden_by_admin = True
    row.override_value = is_eligible
    row.overridden_by = overridden_by
    row.overridden_at = _now()
    session.flush()

    # Whole channel: a forced verdict takes (or frees) a daily slot
    recompute_eligibility(session, channel_id=video.channel_id)
    session.refresh(row)

    logger.info(
        f"Admin override on video {video_id}: "
        f"{'eligible' if is_eligible else 'not eligible'} (by {overridden_by})"
    )
    return row


def clear_admin_override(session: Session, video_id: str) -> VideoEligibility:
    """Drop the override and fall back to a fresh rule evaluation."""
    video = _get_video(session, video_id)

    row = video.eligibility
    if row is not None:
        row.overridden_by_admin = False
        row.override_value = None
        row.overridden_by = None
        row.overridden_at = None
        session.flush()

    # Whole channel: the video may take (or free) a daily slot
    recompute_eligibility(session, channel_id=video.channel_id)
    session.refresh(video)
    logger.info(f"Admin override cleared on video {video_id}")
    return video.eligibility


# ===========================================================================
# Read-side snapshots
# ===========================================================================

def to_video_record(video: Video) -> VideoRecord:
    row = video.eligibility
    return VideoRecord(
        video_id=video.id,
        platform=video.platform,
        title=video.title or "",
        url=video.url,
        published_at=_to_utc(video.published_at) if video.published_at else None,
        views=video.views or 0,
        is_eligible=bool(row and row.is_eligible),
        eligible_robux=row.eligible_robux if row else 0,
        reasons=list(row.reasons or []) if row else ["Not yet evaluated"],
        overridden_by_admin=bool(row and row.overridden_by_admin),
    )


def to_participant_record(participant: Participant) -> ParticipantRecord:
    return ParticipantRecord(
        participant_id=participant.id,
        display_name=participant.display_name,
        discord_username=participant.discord_username,
        avatar_url=participant.avatar_url,
        channels=[
            ChannelRecord(
                channel_id=c.id,
                platform=c.platform,
                handle=c.handle,
                platform_channel_id=c.platform_channel_id,
                url=c.url,
                videos=[to_video_record(v) for v in c.videos],
            )
            for c in participant.channels
        ],
    )


def list_participant_records(session: Session) -> list[ParticipantRecord]:
    """All participants in registration order."""
    statement = _participant_query().order_by(Participant.created_at, Participant.id)
    return [to_participant_record(p) for p in session.scalars(statement).all()]


def list_video_records(session: Session) -> list[VideoRecord]:
    return [to_video_record(v) for v in load_videos(session)]


def list_videos_page(
    session: Session,
    platform: Optional[str] = None,
    eligible: Optional[bool] = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Video], int]:
    """Newest first, optionally filtered by platform and eligibility."""
    page = max(page, 1)
    limit = max(min(limit, 200), 1)

    statement = select(Video).outerjoin(VideoEligibility)
    if platform:
        statement = statement.where(Video.platform == platform)
    if eligible is True:
        statement = statement.where(VideoEligibility.is_eligible.is_(True))
    elif eligible is False:
        statement = statement.where(
            or_(VideoEligibility.id.is_(None), VideoEligibility.is_eligible.is_(False))
        )

    total = session.scalar(select(func.count()).select_from(statement.subquery()))
    rows = session.scalars(
        statement.options(
            selectinload(Video.eligibility),
            selectinload(Video.channel).selectinload(Channel.participant),
        )
        .order_by(Video.published_at.desc(), Video.id)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(rows), total or 0
