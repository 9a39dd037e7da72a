"""Property-based tests for engagement scoring.

**Feature: short-video-platform, Property 12: Engagement Score Decays With Age**
"""

from datetime import timedelta

from hypothesis import given, settings, strategies as st

from app.modules.feed.scoring import (
    DEFAULT_SCORING,
    Interactions,
    age_hours,
    engagement_score,
    quality_factor,
    score_video,
)
from tests.conftest import NOW, make_video

interactions = st.builds(
    Interactions,
    views=st.integers(min_value=0, max_value=1_000_000),
    likes=st.integers(min_value=0, max_value=100_000),
    comments=st.integers(min_value=0, max_value=100_000),
    shares=st.integers(min_value=0, max_value=100_000),
)


class TestEngagementScore:
    """Property tests for the engagement score."""

    @given(
        counts=interactions,
        younger=st.floats(min_value=0.0, max_value=400.0),
        gap=st.floats(min_value=0.01, max_value=100.0),
    )
    @settings(max_examples=200)
    def test_score_strictly_decreases_with_age(self, counts, younger, gap) -> None:
        """**Feature: short-video-platform, Property 12: Engagement Score Decays With Age**

        For equal interactions, an older video SHALL always score lower.
        """
        assert engagement_score(counts, younger + gap) < engagement_score(counts, younger)

    @given(counts=interactions, hours=st.floats(min_value=0.0, max_value=400.0))
    @settings(max_examples=100)
    def test_score_is_positive(self, counts, hours) -> None:
        assert engagement_score(counts, hours) > 0

    @given(counts=interactions)
    @settings(max_examples=100)
    def test_quality_factor_bounds(self, counts) -> None:
        quality = quality_factor(counts)
        low = DEFAULT_SCORING.quality_floor
        assert low <= quality <= low + DEFAULT_SCORING.quality_range

    def test_fresh_video_without_interactions(self) -> None:
        # raw 1.0, no decay, quality floor, new-content boost
        assert engagement_score(Interactions(), 0.0) == 1.0 * 0.8 * 1.2

    def test_new_content_boost_ends_after_a_day(self) -> None:
        before = engagement_score(Interactions(), 23.99)
        after = engagement_score(Interactions(), 24.0)
        assert after < before / 1.15


class TestAgeHours:
    def test_prefers_published_at(self) -> None:
        hours = age_hours(NOW - timedelta(hours=3), NOW - timedelta(hours=10), NOW)
        assert hours == 3.0

    def test_falls_back_to_created_at(self) -> None:
        assert age_hours(None, NOW - timedelta(hours=5), NOW) == 5.0

    def test_never_negative(self) -> None:
        assert age_hours(NOW + timedelta(hours=1), None, NOW) == 0.0
        assert age_hours(None, None, NOW) == 0.0

    def test_naive_timestamps_are_utc(self) -> None:
        naive = (NOW - timedelta(hours=2)).replace(tzinfo=None)
        assert age_hours(naive, None, NOW) == 2.0


def test_score_video_reads_counters() -> None:
    busy = make_video(view_count=100, like_count=20, comment_count=5, share_count=2)
    idle = make_video(published_at=busy.published_at)
    assert score_video(busy, NOW) > score_video(idle, NOW)
