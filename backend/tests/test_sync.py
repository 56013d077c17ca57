"""
Tests for services/sync.py — the sync job with injected fetchers.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import make_fetched, utc
from models.db import Video
from services import repository
from services.sync import SyncJob, parse_iso8601_duration


class FakeFetcher:
    """Returns canned videos per channel handle / channel id."""

    def __init__(self, videos_by_key):
        self.videos_by_key = videos_by_key
        self.calls = []

    def fetch_videos(self, channel):
        key = channel.handle or channel.platform_channel_id
        self.calls.append(key)
        return list(self.videos_by_key.get(key, []))


@pytest.fixture
def participants(session):
    alice = repository.create_participant(
        session, display_name="Alice", tiktok_handle="alice", youtube_channel_id="UCalice",
    )
    bob = repository.create_participant(session, display_name="Bob", tiktok_handle="bob")
    return alice, bob


class TestParseDuration:

    @pytest.mark.parametrize("value,expected", [
        ("PT15S", 15),
        ("PT1M5S", 65),
        ("PT2H", 7200),
        ("PT1H2M3S", 3723),
        ("P1DT1S", 86401),
        ("", None),
        (None, None),
        ("PT", None),
        ("garbage", None),
    ])
    def test_parse(self, value, expected):
        assert parse_iso8601_duration(value) == expected


class TestSyncJob:

    def test_upserts_and_recomputes(self, session, participants):
        tiktok = FakeFetcher({
            "alice": [make_fetched(f"a{i}", published_at=utc(2026, 3, 1, 8 + i)) for i in range(4)],
            "bob": [make_fetched("b1", views=10)],
        })
        youtube = FakeFetcher({"UCalice": [make_fetched("y1", views=50000)]})

        report = SyncJob({"tiktok": tiktok, "youtube": youtube}).run(session)

        assert report.channels_processed == 3
        assert report.synced == 6
        assert report.errors == 0
        assert report.recompute.processed == 6

        eligible = {
            v.external_video_id: v.eligibility.is_eligible
            for v in session.query(Video).all()
        }
        assert eligible == {
            "a0": True, "a1": True, "a2": True, "a3": False,
            "b1": False, "y1": True,
        }

    def test_resync_does_not_duplicate(self, session, participants):
        fetcher = FakeFetcher({"alice": [make_fetched("a1")], "bob": []})
        job = SyncJob({"tiktok": fetcher})
        job.run(session)
        job.run(session)
        assert session.query(Video).count() == 1

    def test_new_video_can_demote_later_post(self, session, participants):
        day = utc(2026, 3, 1, 8)
        first_batch = [make_fetched(f"a{i}", published_at=day + timedelta(hours=i + 1)) for i in range(3)]
        fetcher = FakeFetcher({"alice": first_batch})
        job = SyncJob({"tiktok": fetcher})
        job.run(session)

        # An earlier post shows up on the next sync and takes a slot
        fetcher.videos_by_key["alice"] = first_batch + [make_fetched("early", published_at=day)]
        job.run(session)

        by_id = {v.external_video_id: v.eligibility for v in session.query(Video).all()}
        assert by_id["early"].is_eligible is True
        assert by_id["a2"].is_eligible is False
        assert "Daily limit exceeded (max 3/day)" in by_id["a2"].reasons

    def test_fetch_failure_skips_channel_only(self, session, participants):
        broken = MagicMock()
        broken.fetch_videos.side_effect = RuntimeError("rate limited")
        youtube = FakeFetcher({"UCalice": [make_fetched("y1", views=50000)]})

        report = SyncJob({"tiktok": broken, "youtube": youtube}).run(session)

        assert report.errors == 2  # alice's and bob's tiktok channels
        assert report.synced == 1
        assert session.query(Video).count() == 1

    def test_missing_fetcher_is_skipped(self, session, participants):
        report = SyncJob({}).run(session)
        assert report.synced == 0
        assert report.errors == 0
        assert report.channels_processed == 3

    def test_override_survives_sync(self, session, participants):
        fetcher = FakeFetcher({"alice": [make_fetched("a1", views=1)]})
        job = SyncJob({"tiktok": fetcher})
        job.run(session)

        video = session.query(Video).one()
        repository.apply_admin_override(session, video.id, True)
        job.run(session)

        assert video.eligibility.is_eligible is True
        assert video.eligibility.reasons == ["Eligible (admin override)"]
