"""
Pydantic models for the Creator Rewards service.

Models:
  - VideoInput: One video as seen by the eligibility engine (+ its admin override state)
  - EligibilityResult: The verdict triple {is_eligible, reasons, eligible_robux}
  - RuleComputed / AdminOverridden: Tagged verdict variants stored per video
  - VideoRecord / ChannelRecord / ParticipantRecord: Read-side snapshots for
    the budget aggregator and the leaderboard ranker
  - BudgetStats / PlatformBreakdown / ParticipantRobux / LeaderboardEntry: Aggregates
  - FetchedVideo: A video as returned by a platform content fetcher
  - RecomputeReport / SyncReport: Batch outcome counters
  - API request / response models
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Literal, Optional, Union


# ---------------------------------------------------------------------------
# VideoInput — what the rule evaluator and the daily cap filter consume.
# override is tri-state: None = no override, True/False = forced verdict.
# ---------------------------------------------------------------------------
class VideoInput(BaseModel):
    id: str
    platform: str  # "tiktok" or "youtube"
    channel_id: str
    title: str = ""
    description: Optional[str] = None
    published_at: datetime
    duration_seconds: Optional[int] = None
    views: int = 0
    override: Optional[bool] = None


class EligibilityResult(BaseModel):
    is_eligible: bool
    reasons: list[str]
    eligible_robux: int = 0


# ---------------------------------------------------------------------------
# Verdict — tagged variant. AdminOverridden wins over rules until cleared.
# ---------------------------------------------------------------------------
class RuleComputed(BaseModel):
    kind: Literal["rule_computed"] = "rule_computed"
    result: EligibilityResult


class AdminOverridden(BaseModel):
    kind: Literal["admin_overridden"] = "admin_overridden"
    is_eligible: bool
    overridden_by: Optional[str] = None
    overridden_at: Optional[datetime] = None


Verdict = Union[RuleComputed, AdminOverridden]


# ---------------------------------------------------------------------------
# Read-side snapshots (built from persisted rows by the repository)
# ---------------------------------------------------------------------------
class VideoRecord(BaseModel):
    video_id: str
    platform: str
    title: str = ""
    url: Optional[str] = None
    published_at: Optional[datetime] = None
    views: int = 0
    is_eligible: bool = False
    eligible_robux: int = 0
    reasons: list[str] = Field(default_factory=list)
    overridden_by_admin: bool = False


class ChannelRecord(BaseModel):
    channel_id: str
    platform: str
    handle: Optional[str] = None
    platform_channel_id: Optional[str] = None
    url: Optional[str] = None
    videos: list[VideoRecord] = Field(default_factory=list)


class ParticipantRecord(BaseModel):
    participant_id: str
    display_name: str
    discord_username: Optional[str] = None
    avatar_url: Optional[str] = None
    channels: list[ChannelRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------
class BudgetStats(BaseModel):
    total_earned: int = 0
    total_spent: int = 0
    remaining: int = 0
    budget_exceeded: bool = False


class PlatformRobux(BaseModel):
    count: int = 0
    robux: int = 0


class PlatformBreakdown(BaseModel):
    tiktok: PlatformRobux = Field(default_factory=PlatformRobux)
    youtube: PlatformRobux = Field(default_factory=PlatformRobux)


class ParticipantRobux(BaseModel):
    participant_id: str
    display_name: str
    eligible_videos_count: int = 0
    robux_earned: int = 0


class LeaderboardChannel(BaseModel):
    platform: str
    handle: Optional[str] = None
    channel_id: Optional[str] = None
    url: Optional[str] = None


class LeaderboardEntry(BaseModel):
    rank: int
    participant_id: str
    display_name: str
    discord_username: Optional[str] = None
    avatar_url: Optional[str] = None
    channels: list[LeaderboardChannel] = Field(default_factory=list)
    total_views: int = 0
    eligible_posts: int = 0
    robux_earned: int = 0


# ---------------------------------------------------------------------------
# Sync / recompute
# ---------------------------------------------------------------------------
class FetchedVideo(BaseModel):
    external_video_id: str
    title: str = ""
    description: Optional[str] = None
    published_at: datetime
    duration_seconds: Optional[int] = None
    views: int = 0
    thumbnail_url: Optional[str] = None
    url: Optional[str] = None


class RecomputeReport(BaseModel):
    processed: int = 0
    updated: int = 0
    errors: int = 0


class SyncReport(BaseModel):
    synced: int = 0
    errors: int = 0
    channels_processed: int = 0
    recompute: RecomputeReport = Field(default_factory=RecomputeReport)


# ---------------------------------------------------------------------------
# API request / response models
# ---------------------------------------------------------------------------
class RegisterRequest(BaseModel):
    display_name: str = Field(min_length=1)
    email: Optional[str] = None
    discord_username: Optional[str] = None
    tiktok_handle: Optional[str] = None
    youtube_channel: Optional[str] = None


class RegisterResponse(BaseModel):
    status: str
    participant_id: str
    display_name: str
    dashboard_token: str
    dashboard_url: str


class OverrideRequest(BaseModel):
    # Override reasons are fixed strings
    model_config = ConfigDict(extra="forbid")

    video_id: str
    is_eligible: bool
