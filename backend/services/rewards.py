"""
Robux budget accounting and the participant leaderboard.

Both work on persisted verdicts (VideoRecord snapshots) and recompute from
scratch on every call; there is no running counter to keep in sync.

Budget:
  total_spent    = sum(eligible_robux for eligible videos)
  remaining      = max(0, TOTAL_BUDGET - total_spent)
  budget_exceeded = total_spent > TOTAL_BUDGET

Leaderboard (per participant):
  total_views    = sum of views over ALL their videos (eligible or not)
  eligible_posts = number of eligible videos
  robux_earned   = eligible_posts × REWARD_UNIT
Sorted by total_views descending; ties go to the lower participant_id,
then input order. rank = 1-based position.
"""

import logging
from typing import Iterable, Optional

import config
from models.schemas import (
    BudgetStats,
    LeaderboardChannel,
    LeaderboardEntry,
    ParticipantRecord,
    ParticipantRobux,
    PlatformBreakdown,
    PlatformRobux,
    VideoRecord,
)

logger = logging.getLogger(__name__)

TOTAL_BUDGET = config.TOTAL_BUDGET
REWARD_UNIT = config.REWARD_UNIT
PLATFORMS = ("tiktok", "youtube")


# ===========================================================================
# Budget
# ===========================================================================

def calculate_budget_stats(
    videos: Iterable[VideoRecord],
    total_budget: int = TOTAL_BUDGET,
) -> BudgetStats:
    total_spent = sum(v.eligible_robux for v in videos if v.is_eligible)
    stats = BudgetStats(
        total_earned=total_spent,
        total_spent=total_spent,
        remaining=max(0, total_budget - total_spent),
        budget_exceeded=total_spent > total_budget,
    )

    if stats.budget_exceeded:
        logger.warning(
            f"Budget exceeded: spent {total_spent:,} of {total_budget:,} Robux"
        )
    return stats


def calculate_platform_breakdown(videos: Iterable[VideoRecord]) -> PlatformBreakdown:
    """Eligible video count and Robux per platform."""
    breakdown = PlatformBreakdown()
    for video in videos:
        if not video.is_eligible or video.platform not in PLATFORMS:
            continue
        bucket: PlatformRobux = getattr(breakdown, video.platform)
        bucket.count += 1
        bucket.robux += video.eligible_robux
    return breakdown


def _all_videos(participant: ParticipantRecord) -> list[VideoRecord]:
    return [v for channel in participant.channels for v in channel.videos]


def calculate_participant_robux(participant: ParticipantRecord) -> ParticipantRobux:
    eligible = sum(1 for v in _all_videos(participant) if v.is_eligible)
    return ParticipantRobux(
        participant_id=participant.participant_id,
        display_name=participant.display_name,
        eligible_videos_count=eligible,
        robux_earned=eligible * REWARD_UNIT,
    )


# ===========================================================================
# Leaderboard
# ===========================================================================

def build_leaderboard(
    participants: list[ParticipantRecord],
    platform: Optional[str] = None,
    exclude_zero_views: bool = False,
) -> list[LeaderboardEntry]:
    """
    Rank participants by total views.

    Args:
        participants:       Participants with channels, videos and verdicts
        platform:           Only count channels/videos on this platform
                            (None = all platforms combined)
        exclude_zero_views: Drop participants with no views before ranking

    Returns:
        LeaderboardEntry list, rank 1 first
    """
    rows: list[tuple[int, LeaderboardEntry]] = []

    for position, participant in enumerate(participants):
        channels = [
            c for c in participant.channels
            if platform is None or c.platform == platform
        ]
        videos = [
            v for c in channels for v in c.videos
            if platform is None or v.platform == platform
        ]

        total_views = sum(v.views for v in videos)
        eligible_posts = sum(1 for v in videos if v.is_eligible)

        if exclude_zero_views and total_views == 0:
            continue

        entry = LeaderboardEntry(
            rank=0,
            participant_id=participant.participant_id,
            display_name=participant.display_name,
            discord_username=participant.discord_username,
            avatar_url=participant.avatar_url,
            channels=[
                LeaderboardChannel(
                    platform=c.platform,
                    handle=c.handle,
                    channel_id=c.platform_channel_id,
                    url=c.url,
                )
                for c in channels
            ],
            total_views=total_views,
            eligible_posts=eligible_posts,
            robux_earned=eligible_posts * REWARD_UNIT,
        )
        rows.append((position, entry))

    rows.sort(key=lambda row: (-row[1].total_views, row[1].participant_id, row[0]))

    entries = []
    for rank, (_, entry) in enumerate(rows, start=1):
        entry.rank = rank
        entries.append(entry)

    logger.info(
        f"Leaderboard built: {len(entries)} entries "
        f"(platform={platform or 'combined'}, exclude_zero_views={exclude_zero_views})"
    )
    return entries
