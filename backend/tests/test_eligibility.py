"""
Tests for services/eligibility.py.

Test categories:
  1. RULE EVALUATOR (duration, hashtag, views, reason accumulation)
  2. ADMIN OVERRIDE short-circuit
  3. DAILY CAP (per channel per UTC day, stable tie-break, demotion reasons)
  4. ORCHESTRATOR (grouping, idempotence, duplicate ids)
  5. PROPERTY CHECKS across a mixed batch
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_video_input, utc
from services.eligibility import (
    DAILY_LIMIT_REASON,
    ELIGIBLE_REASON,
    MAX_POSTS_PER_DAY,
    OVERRIDE_ELIGIBLE_REASON,
    OVERRIDE_NOT_ELIGIBLE_REASON,
    REWARD_UNIT,
    apply_daily_limit,
    check_eligibility_for_videos,
    evaluate_video,
    has_hashtag,
    utc_calendar_date,
)


# ===========================================================================
# 1. Rule evaluator
# ===========================================================================

class TestRuleEvaluator:

    def test_short_video_fails_duration_only(self):
        video = make_video_input(duration_seconds=10, views=6000)
        result = evaluate_video(video)
        assert result.is_eligible is False
        assert result.reasons == ["Duration < 15 seconds"]
        assert result.eligible_robux == 0

    def test_mixed_case_hashtag_is_eligible(self):
        video = make_video_input(title="Moon day #TryTheMoon", duration_seconds=20, views=8000)
        result = evaluate_video(video)
        assert result.is_eligible is True
        assert result.reasons == [ELIGIBLE_REASON]
        assert result.eligible_robux == 100

    def test_exactly_15_seconds_passes(self):
        assert evaluate_video(make_video_input(duration_seconds=15)).is_eligible

    def test_missing_duration_fails_without_raising(self):
        result = evaluate_video(make_video_input(duration_seconds=None))
        assert result.reasons == ["Duration < 15 seconds"]

    def test_hashtag_in_description(self):
        video = make_video_input(title="no tag here", description="see #trythemoon")
        assert evaluate_video(video).is_eligible

    def test_missing_hashtag(self):
        video = make_video_input(title="plain title", description="")
        assert evaluate_video(video).reasons == ["Missing hashtag #trythemoon"]

    def test_hashtag_substring_match(self):
        assert has_hashtag("join #TRYTHEMOONNOW")

    @pytest.mark.parametrize("platform,views,eligible", [
        ("tiktok", 4999, False),
        ("tiktok", 5000, True),
        ("youtube", 9999, False),
        ("youtube", 10000, True),
    ])
    def test_views_threshold_per_platform(self, platform, views, eligible):
        video = make_video_input(platform=platform, views=views)
        assert evaluate_video(video).is_eligible is eligible

    def test_views_reason_includes_threshold(self):
        tiktok = evaluate_video(make_video_input(platform="tiktok", views=10))
        youtube = evaluate_video(make_video_input(platform="youtube", views=10))
        assert tiktok.reasons == ["Views < 5,000"]
        assert youtube.reasons == ["Views < 10,000"]

    def test_unknown_platform_never_eligible(self):
        result = evaluate_video(make_video_input(platform="instagram", views=10**6))
        assert result.is_eligible is False
        assert len(result.reasons) == 1

    def test_all_failures_reported_in_order(self):
        video = make_video_input(title="nothing", duration_seconds=3, views=1)
        assert evaluate_video(video).reasons == [
            "Duration < 15 seconds",
            "Missing hashtag #trythemoon",
            "Views < 5,000",
        ]


# ===========================================================================
# 2. Admin override
# ===========================================================================

class TestAdminOverride:

    def test_override_true_bypasses_failing_rules(self):
        video = make_video_input(title="no tag", duration_seconds=1, views=0, override=True)
        result = evaluate_video(video)
        assert result.is_eligible is True
        assert result.reasons == [OVERRIDE_ELIGIBLE_REASON]
        assert result.eligible_robux == REWARD_UNIT

    def test_override_false_bypasses_passing_rules(self):
        result = evaluate_video(make_video_input(override=False))
        assert result.is_eligible is False
        assert result.reasons == [OVERRIDE_NOT_ELIGIBLE_REASON]
        assert result.eligible_robux == 0

    def test_rule_only_verdict_of_overridden_video(self):
        video = make_video_input(views=0, override=True)
        rules_only = evaluate_video(video.model_copy(update={"override": None}))
        assert rules_only.is_eligible is False
        assert rules_only.reasons == ["Views < 5,000"]


# ===========================================================================
# 3. Daily cap
# ===========================================================================

def _same_day_batch(count, channel_id="c1", start=None, step_minutes=30):
    start = start or utc(2026, 3, 1, 8)
    return [
        make_video_input(
            id=f"{channel_id}-v{i}",
            channel_id=channel_id,
            published_at=start + timedelta(minutes=step_minutes * i),
        )
        for i in range(count)
    ]


class TestDailyCap:

    def test_three_per_day_no_demotion(self):
        videos = _same_day_batch(3)
        results = check_eligibility_for_videos(videos)
        assert all(r.is_eligible for r in results.values())

    def test_fourth_video_demoted(self):
        videos = _same_day_batch(4)
        results = check_eligibility_for_videos(videos)

        assert [results[v.id].is_eligible for v in videos] == [True, True, True, False]
        demoted = results[videos[3].id]
        assert demoted.eligible_robux == 0
        assert demoted.reasons == [DAILY_LIMIT_REASON]
        assert "Daily limit exceeded" in demoted.reasons[0]

    def test_input_order_does_not_matter(self):
        videos = _same_day_batch(5)
        results = check_eligibility_for_videos(list(reversed(videos)))
        accepted = [v.id for v in videos if results[v.id].is_eligible]
        assert accepted == [v.id for v in videos[:MAX_POSTS_PER_DAY]]

    def test_equal_timestamps_keep_input_order(self):
        ts = utc(2026, 3, 1, 9)
        videos = [make_video_input(id=f"v{i}", published_at=ts) for i in range(4)]
        results = check_eligibility_for_videos(videos)
        assert results["v3"].is_eligible is False
        assert all(results[f"v{i}"].is_eligible for i in range(3))

    def test_ineligible_videos_do_not_use_slots(self):
        videos = _same_day_batch(5)
        videos[0] = videos[0].model_copy(update={"views": 0})
        results = check_eligibility_for_videos(videos)
        eligible = [v.id for v in videos if results[v.id].is_eligible]
        assert eligible == [videos[1].id, videos[2].id, videos[3].id]
        assert results[videos[0].id].reasons == ["Views < 5,000"]
        assert results[videos[4].id].reasons == [DAILY_LIMIT_REASON]

    def test_days_are_utc_calendar_days(self):
        # 23:30 UTC and 00:30 UTC next day are different buckets
        late = utc(2026, 3, 1, 23, 30)
        videos = _same_day_batch(3, start=utc(2026, 3, 1, 20)) + [
            make_video_input(id="late", published_at=late),
            make_video_input(id="next", published_at=late + timedelta(hours=1)),
        ]
        results = check_eligibility_for_videos(videos)
        assert results["late"].is_eligible is False
        assert results["next"].is_eligible is True

    def test_non_utc_offset_is_converted(self):
        # 2026-03-01 21:00 at UTC-05:00 is 2026-03-02 UTC
        eastern = timezone(timedelta(hours=-5))
        assert utc_calendar_date(datetime(2026, 3, 1, 21, 0, tzinfo=eastern)).day == 2

    def test_channels_never_share_slots(self):
        videos = _same_day_batch(3, channel_id="a") + _same_day_batch(3, channel_id="b")
        results = check_eligibility_for_videos(videos)
        assert all(r.is_eligible for r in results.values())

    def test_override_eligible_consumes_slot(self):
        videos = _same_day_batch(4)
        videos[0] = videos[0].model_copy(update={"views": 0, "override": True})
        results = check_eligibility_for_videos(videos)
        assert results[videos[0].id].reasons == [OVERRIDE_ELIGIBLE_REASON]
        assert results[videos[3].id].is_eligible is False

    def test_late_override_eligible_can_be_demoted(self):
        videos = _same_day_batch(4)
        videos[3] = videos[3].model_copy(update={"override": True})
        results = check_eligibility_for_videos(videos)
        demoted = results[videos[3].id]
        assert demoted.is_eligible is False
        assert OVERRIDE_ELIGIBLE_REASON not in demoted.reasons
        assert demoted.reasons == [DAILY_LIMIT_REASON]

    def test_apply_daily_limit_does_not_mutate_input(self):
        videos = _same_day_batch(4)
        results = {v.id: evaluate_video(v) for v in videos}
        apply_daily_limit(videos, results)
        assert all(r.is_eligible for r in results.values())


# ===========================================================================
# 4. Orchestrator
# ===========================================================================

class TestOrchestrator:

    def test_idempotent(self):
        videos = _same_day_batch(5) + _same_day_batch(2, channel_id="c2")
        first = check_eligibility_for_videos(videos)
        second = check_eligibility_for_videos(videos)
        assert {k: v.model_dump() for k, v in first.items()} == \
               {k: v.model_dump() for k, v in second.items()}

    def test_every_video_appears_once(self):
        videos = _same_day_batch(4) + _same_day_batch(4, channel_id="c2")
        results = check_eligibility_for_videos(videos)
        assert set(results) == {v.id for v in videos}

    def test_duplicate_ids_rejected(self):
        video = make_video_input()
        with pytest.raises(ValueError):
            check_eligibility_for_videos([video, video])

    def test_empty_batch(self):
        assert check_eligibility_for_videos([]) == {}


# ===========================================================================
# 5. Property checks
# ===========================================================================

class TestVerdictProperties:

    def test_reasons_consistent_with_verdict(self):
        videos = []
        for i in range(12):
            videos.append(make_video_input(
                id=f"v{i}",
                channel_id=f"c{i % 2}",
                platform="tiktok" if i % 3 else "youtube",
                title="#trythemoon" if i % 4 else "untagged",
                duration_seconds=None if i == 5 else 10 + i * 3,
                views=i * 1500,
                published_at=utc(2026, 3, 1 + i % 2, 6 + i),
                override=True if i == 7 else None,
            ))
        results = check_eligibility_for_videos(videos)

        for video in videos:
            result = results[video.id]
            assert result.reasons
            if result.is_eligible:
                expected = OVERRIDE_ELIGIBLE_REASON if video.override else ELIGIBLE_REASON
                assert result.reasons == [expected]
                assert result.eligible_robux == REWARD_UNIT
            else:
                assert result.eligible_robux == 0
                assert ELIGIBLE_REASON not in result.reasons
                assert OVERRIDE_ELIGIBLE_REASON not in result.reasons
