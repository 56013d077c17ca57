"""
Video eligibility rules and the daily posting cap.

All functions here are pure: no database, no network. The repository feeds
them VideoInput snapshots and persists what comes back.

Pipeline:
  1. evaluate_video(video) → per-video verdict (duration, hashtag, views)
  2. apply_daily_limit(videos, results) → demote eligible videos beyond
     MAX_POSTS_PER_DAY per channel per UTC calendar day
  3. check_eligibility_for_videos(videos) → 1 + 2 over any batch, grouped by channel

Rule table (evaluated independently, every failing rule adds a reason):
  duration_seconds is set and >= 15         else "Duration < 15 seconds"
  "#trythemoon" in title + description      else "Missing hashtag #trythemoon"
  views >= 5,000 (tiktok) / 10,000 (youtube) else "Views < 5,000" / "Views < 10,000"

Admin overrides short-circuit the rule table entirely. A forced-eligible
video still takes one of its day's slots in the daily cap pass, in
publish-time order, like any rule-eligible video.
"""

import logging
from datetime import date, datetime, timezone
from typing import Iterable, Optional

import config
from models.schemas import EligibilityResult, VideoInput

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
HASHTAG = config.REQUIRED_HASHTAG
MIN_DURATION_SECONDS = config.MIN_DURATION_SECONDS
MIN_VIEWS_BY_PLATFORM = {
    "tiktok": config.TIKTOK_MIN_VIEWS,
    "youtube": config.YOUTUBE_MIN_VIEWS,
}
MAX_POSTS_PER_DAY = config.MAX_POSTS_PER_DAY
REWARD_UNIT = config.REWARD_UNIT

ELIGIBLE_REASON = "Eligible"
OVERRIDE_ELIGIBLE_REASON = "Eligible (admin override)"
OVERRIDE_NOT_ELIGIBLE_REASON = "Not eligible (admin override)"
DAILY_LIMIT_REASON = f"Daily limit exceeded (max {MAX_POSTS_PER_DAY}/day)"

# Positive reasons that must not survive a demotion
_POSITIVE_REASONS = {ELIGIBLE_REASON, OVERRIDE_ELIGIBLE_REASON}


# ===========================================================================
# Rule predicates
# ===========================================================================

def has_hashtag(text: str) -> bool:
    """Case-insensitive substring match of the required hashtag."""
    return HASHTAG.lower() in text.lower()


def meets_duration_requirement(duration_seconds: Optional[int]) -> bool:
    return duration_seconds is not None and duration_seconds >= MIN_DURATION_SECONDS


def min_views_for_platform(platform: str) -> Optional[int]:
    return MIN_VIEWS_BY_PLATFORM.get(platform)


def meets_views_requirement(platform: str, views: int) -> bool:
    """Unknown platforms never meet the views requirement."""
    threshold = min_views_for_platform(platform)
    if threshold is None:
        return False
    return views >= threshold


# ===========================================================================
# Step 1: Single-video verdict
# ===========================================================================

def evaluate_video(video: VideoInput) -> EligibilityResult:
    """
    Evaluate one video against the rule table (no daily limit).

    video.override True/False forces the verdict and skips every rule;
    None evaluates the rules. A rule-only verdict for an overridden video
    is evaluate_video(video.model_copy(update={"override": None})).

    Returns:
        EligibilityResult. Never raises for a well-formed VideoInput: a
        missing duration or description is just a failed check.
    """
    override = video.override

    # ------------------------------------------------------------------
    # Admin override takes precedence
    # ------------------------------------------------------------------
    if override is True:
        return EligibilityResult(
            is_eligible=True,
            reasons=[OVERRIDE_ELIGIBLE_REASON],
            eligible_robux=REWARD_UNIT,
        )
    if override is False:
        return EligibilityResult(
            is_eligible=False,
            reasons=[OVERRIDE_NOT_ELIGIBLE_REASON],
            eligible_robux=0,
        )

    reasons: list[str] = []

    if not meets_duration_requirement(video.duration_seconds):
        reasons.append(f"Duration < {MIN_DURATION_SECONDS} seconds")

    text = f"{video.title or ''} {video.description or ''}"
    if not has_hashtag(text):
        reasons.append(f"Missing hashtag {HASHTAG}")

    if not meets_views_requirement(video.platform, video.views):
        threshold = min_views_for_platform(video.platform)
        if threshold is None:
            reasons.append(f"Unsupported platform '{video.platform}'")
        else:
            reasons.append(f"Views < {threshold:,}")

    is_eligible = not reasons
    return EligibilityResult(
        is_eligible=is_eligible,
        reasons=reasons if reasons else [ELIGIBLE_REASON],
        eligible_robux=REWARD_UNIT if is_eligible else 0,
    )


# ===========================================================================
# Step 2: Daily cap per channel per UTC calendar day
# ===========================================================================

def utc_calendar_date(published_at: datetime) -> date:
    """Calendar date of a timestamp in UTC. Naive timestamps are taken as UTC."""
    if published_at.tzinfo is None:
        return published_at.date()
    return published_at.astimezone(timezone.utc).date()


def _sort_timestamp(published_at: datetime) -> datetime:
    # Naive and aware timestamps must compare; treat naive as UTC
    if published_at.tzinfo is None:
        return published_at.replace(tzinfo=timezone.utc)
    return published_at


def _demote(result: EligibilityResult) -> EligibilityResult:
    kept = [r for r in result.reasons if r not in _POSITIVE_REASONS]
    return EligibilityResult(
        is_eligible=False,
        reasons=kept + [DAILY_LIMIT_REASON],
        eligible_robux=0,
    )


def apply_daily_limit(
    videos: Iterable[VideoInput],
    results: dict[str, EligibilityResult],
) -> dict[str, EligibilityResult]:
    """
    Keep only the first MAX_POSTS_PER_DAY eligible videos per channel per day.

    Videos are walked oldest first (stable sort, so equal timestamps keep
    their input order). Eligible videos past the day's quota are demoted:
    eligible_robux drops to 0, the positive reason is removed and
    "Daily limit exceeded" is appended. Ineligible videos are left untouched
    and do not use a slot.

    Args:
        videos:  Videos to consider. May span several channels; buckets are
                 keyed by (channel_id, UTC date) so channels never interact.
        results: {video_id: EligibilityResult} from evaluate_video

    Returns:
        A new {video_id: EligibilityResult} dict. The input dict is not modified.
    """
    updated = dict(results)
    daily_counts: dict[tuple[str, date], int] = {}

    sorted_videos = sorted(videos, key=lambda v: _sort_timestamp(v.published_at))

    demoted = 0
    for video in sorted_videos:
        result = results.get(video.id)
        if result is None or not result.is_eligible:
            continue

        bucket = (video.channel_id, utc_calendar_date(video.published_at))
        count = daily_counts.get(bucket, 0)

        if count >= MAX_POSTS_PER_DAY:
            updated[video.id] = _demote(result)
            demoted += 1
            logger.debug(
                f"  Daily limit: demoted video {video.id} "
                f"(channel={video.channel_id}, day={bucket[1]})"
            )
        else:
            daily_counts[bucket] = count + 1

    if demoted:
        logger.info(f"Daily limit demoted {demoted} video(s)")

    return updated


# ===========================================================================
# Step 3: Orchestrate over an arbitrary batch
# ===========================================================================

def check_eligibility_for_videos(
    videos: list[VideoInput],
) -> dict[str, EligibilityResult]:
    """
    Evaluate every video in the batch and apply the daily cap per channel.

    The batch must hold the full history of every channel it touches:
    daily buckets depend on every video published that day, so a partial
    batch can demote or promote the wrong videos.

    Raises:
        ValueError: If the same video id appears twice in the batch.
    """
    results: dict[str, EligibilityResult] = {}
    by_channel: dict[str, list[VideoInput]] = {}

    for video in videos:
        if video.id in results:
            raise ValueError(f"Duplicate video id in eligibility batch: {video.id}")
        results[video.id] = evaluate_video(video)
        by_channel.setdefault(video.channel_id, []).append(video)

    merged: dict[str, EligibilityResult] = {}
    for channel_id, channel_videos in by_channel.items():
        channel_results = {v.id: results[v.id] for v in channel_videos}
        merged.update(apply_daily_limit(channel_videos, channel_results))

    eligible_count = sum(1 for r in merged.values() if r.is_eligible)
    logger.info(
        f"Eligibility computed: {len(merged)} videos across "
        f"{len(by_channel)} channel(s), {eligible_count} eligible"
    )

    return merged
