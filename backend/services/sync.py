"""
Video sync job.

Pulls videos for every registered channel through injected content
fetchers, upserts them, then recomputes eligibility for the whole corpus
in one pass (the daily cap needs every video of a channel, not just the
newly synced ones).

Fetchers are passed in per platform; there is no module-level client.
A fetcher that raises only skips its own channel.

Pipeline:
  1. Load all channels
  2. For each channel: fetcher.fetch_videos(channel) → upsert by
     (platform, external_video_id)
  3. recompute_eligibility(session) over everything
"""

import logging
import re
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.db import Channel
from models.schemas import FetchedVideo, SyncReport
from services.repository import recompute_eligibility, upsert_video

logger = logging.getLogger(__name__)

ISO8601_DURATION = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$")


class ContentFetcher(Protocol):
    """Anything that can list a channel's videos on one platform."""

    def fetch_videos(self, channel: Channel) -> list[FetchedVideo]:
        ...


def parse_iso8601_duration(duration: Optional[str]) -> Optional[int]:
    """
    Convert an ISO 8601 duration (YouTube contentDetails) to seconds.

    "PT1M5S" → 65, "PT2H" → 7200. Returns None for missing or malformed
    input so the video simply fails the duration rule.
    """
    if not duration:
        return None
    match = ISO8601_DURATION.match(duration.strip())
    if not match or not any(match.groups()):
        return None
    days, hours, minutes, seconds = (int(g or 0) for g in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


class SyncJob:
    """
    One sync run over all channels.

    Args:
        fetchers: {platform: ContentFetcher}. Channels on a platform with no
                  fetcher are skipped with a warning.
    """

    def __init__(self, fetchers: dict[str, ContentFetcher]):
        self.fetchers = dict(fetchers)

    def run(self, session: Session) -> SyncReport:
        channels = list(session.scalars(select(Channel).order_by(Channel.created_at, Channel.id)).all())
        report = SyncReport(channels_processed=len(channels))

        logger.info(f"Sync started: {len(channels)} channel(s)")

        for channel in channels:
            fetcher = self.fetchers.get(channel.platform)
            if fetcher is None:
                logger.warning(
                    f"No fetcher configured for platform '{channel.platform}', "
                    f"skipping channel {channel.id}"
                )
                continue

            # ------------------------------------------------------------------
            # Step 2: Fetch — failures skip this channel only
            # ------------------------------------------------------------------
            try:
                fetched = fetcher.fetch_videos(channel)
            except Exception as e:
                logger.warning(f"Fetch failed for channel {channel.id} ({channel.platform}): {e}")
                report.errors += 1
                continue

            for item in fetched:
                try:
                    with session.begin_nested():
                        upsert_video(session, channel, item)
                    report.synced += 1
                except Exception as e:
                    logger.error(f"Error upserting video {item.external_video_id}: {e}")
                    report.errors += 1

            session.commit()
            logger.debug(f"  Channel {channel.id}: {len(fetched)} video(s) fetched")

        # ------------------------------------------------------------------
        # Step 3: Full-corpus recompute (daily limits span whole channels)
        # ------------------------------------------------------------------
        report.recompute = recompute_eligibility(session)

        logger.info(
            f"Sync complete: {report.synced} synced, {report.errors} errors, "
            f"{report.channels_processed} channels processed"
        )
        return report
