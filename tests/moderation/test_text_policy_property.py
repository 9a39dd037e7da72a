"""Property-based tests for the shared text policy.

**Feature: short-video-platform, Property 15: Blocked Keywords Always Block**
"""

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.moderation.text_policy import (
    ContentType,
    TextPolicy,
    TextVerdict,
    default_rules,
    verdict_for_safety_severity,
)

policy = TextPolicy(rules=default_rules(["forbidden"]))


class TestTextPolicy:
    @given(prefix=st.text(alphabet="abc ", max_size=20), suffix=st.text(alphabet="abc ", max_size=20))
    @settings(max_examples=100)
    def test_keyword_blocks_anywhere(self, prefix: str, suffix: str) -> None:
        """**Feature: short-video-platform, Property 15: Blocked Keywords Always Block**"""
        result = policy.evaluate(f"{prefix} Forbidden {suffix}", ContentType.VIDEO_COMMENT)
        assert result.verdict == TextVerdict.BLOCK
        assert "blocked_keyword:forbidden" in result.reason

    def test_keyword_inside_word_does_not_match(self) -> None:
        result = policy.evaluate("unforbiddenness", ContentType.VIDEO_CAPTION)
        assert result.verdict == TextVerdict.ALLOW
        assert result.reason is None

    @pytest.mark.parametrize(
        "text,verdict",
        [
            ("check www.example.com now", TextVerdict.REVIEW),
            ("buy buy buy", TextVerdict.REVIEW),
            ("soooooo good", TextVerdict.ALLOW),
            ("THIS IS SO LOUD TODAY", TextVerdict.ALLOW),
            ("a calm sunset", TextVerdict.ALLOW),
            ("", TextVerdict.ALLOW),
        ],
    )
    def test_local_rules(self, text: str, verdict: TextVerdict) -> None:
        assert policy.evaluate(text, ContentType.VIDEO_CAPTION).verdict == verdict

    @pytest.mark.parametrize(
        "severity,verdict",
        [(0, TextVerdict.ALLOW), (2, TextVerdict.REVIEW), (4, TextVerdict.BLOCK), (7, TextVerdict.BLOCK)],
    )
    def test_safety_severity(self, severity: int, verdict: TextVerdict) -> None:
        assert verdict_for_safety_severity(severity) == verdict
        result = policy.evaluate("hello", ContentType.VIDEO_TRANSCRIPT, {"Hate": severity})
        assert result.verdict == verdict

    def test_most_severe_violation_first(self) -> None:
        result = policy.evaluate("forbidden www.example.com", ContentType.VIDEO_COMMENT)
        assert [v.rule_name for v in result.violations][0] == "blocked_keyword"
