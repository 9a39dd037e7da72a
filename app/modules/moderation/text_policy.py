"""Text moderation policy.

One policy is shared by video captions, comments and audio transcripts.
Local rules (blocked keywords, spam patterns, caps, links) each carry a
severity; the most severe violation decides the verdict. When the
content-safety service is configured its per-category severities are merged
in.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from app.core.config import settings


class SeverityLevel(str, Enum):
    """Severity levels for rule violations."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TextVerdict(str, Enum):
    ALLOW = "ALLOW"
    REVIEW = "REVIEW"
    BLOCK = "BLOCK"


class ContentType(str, Enum):
    """What kind of text is being checked; recorded with each result."""

    VIDEO_CAPTION = "video_caption"
    VIDEO_COMMENT = "video_comment"
    VIDEO_TRANSCRIPT = "video_transcript"


SEVERITY_ORDER = {
    SeverityLevel.LOW: 1,
    SeverityLevel.MEDIUM: 2,
    SeverityLevel.HIGH: 3,
    SeverityLevel.CRITICAL: 4,
}

VERDICT_ORDER = {TextVerdict.ALLOW: 0, TextVerdict.REVIEW: 1, TextVerdict.BLOCK: 2}

# Content-safety text severities run 0..7
SAFETY_BLOCK_SEVERITY = 4
SAFETY_REVIEW_SEVERITY = 2

_URL_PATTERN = re.compile(
    r"https?://[^\s]+|www\.[^\s]+|[a-zA-Z0-9-]+\.(?:com|net|org|io|ly|co|xyz|info)\b[^\s]*",
    re.IGNORECASE,
)


def verdict_for_severity(severity: SeverityLevel) -> TextVerdict:
    if severity in (SeverityLevel.HIGH, SeverityLevel.CRITICAL):
        return TextVerdict.BLOCK
    if severity == SeverityLevel.MEDIUM:
        return TextVerdict.REVIEW
    return TextVerdict.ALLOW


def verdict_for_safety_severity(severity: int) -> TextVerdict:
    if severity >= SAFETY_BLOCK_SEVERITY:
        return TextVerdict.BLOCK
    if severity >= SAFETY_REVIEW_SEVERITY:
        return TextVerdict.REVIEW
    return TextVerdict.ALLOW


def worst_verdict(*verdicts: TextVerdict) -> TextVerdict:
    return max(verdicts, key=lambda v: VERDICT_ORDER[v], default=TextVerdict.ALLOW)


@dataclass
class RuleViolation:
    rule_name: str
    severity: SeverityLevel
    matched: str


@dataclass
class TextModerationResult:
    content_type: ContentType
    verdict: TextVerdict
    violations: list[RuleViolation] = field(default_factory=list)
    categories: dict[str, int] = field(default_factory=dict)

    @property
    def reason(self) -> Optional[str]:
        if self.verdict == TextVerdict.ALLOW:
            return None
        parts = [f"{v.rule_name}:{v.matched}" for v in self.violations
                 if verdict_for_severity(v.severity) != TextVerdict.ALLOW]
        parts += [f"{name}:{severity}" for name, severity in self.categories.items()
                  if verdict_for_safety_severity(severity) != TextVerdict.ALLOW]
        return ", ".join(parts) or self.verdict.value


@dataclass
class TextRule:
    """A single local check: returns the matched text, or None."""

    name: str
    severity: SeverityLevel
    check: Callable[[str], Optional[str]]


def _check_keywords(keywords: list[str]) -> Callable[[str], Optional[str]]:
    lowered = [k.lower() for k in keywords if k]

    def check(content: str) -> Optional[str]:
        content_lower = content.lower()
        for keyword in lowered:
            if re.search(rf"\b{re.escape(keyword)}\b", content_lower):
                return keyword
        return None

    return check


def check_repeated_characters(content: str) -> Optional[str]:
    match = re.search(r"(.)\1{4,}", content)
    return match.group() if match else None


def check_repeated_words(content: str) -> Optional[str]:
    words = content.lower().split()
    for i in range(len(words) - 2):
        if words[i] == words[i + 1] == words[i + 2]:
            return words[i]
    return None


def check_caps(content: str, min_length: int = 10, threshold_percent: int = 70) -> Optional[str]:
    letters = [c for c in content if c.isalpha()]
    if len(letters) < min_length:
        return None
    caps_percent = sum(1 for c in letters if c.isupper()) / len(letters) * 100
    if caps_percent >= threshold_percent:
        return f"{caps_percent:.0f}%"
    return None


def check_links(content: str) -> Optional[str]:
    match = _URL_PATTERN.search(content)
    return match.group() if match else None


def default_rules(blocked_keywords: Optional[list[str]] = None) -> list[TextRule]:
    keywords = settings.MODERATION_BLOCKED_KEYWORDS if blocked_keywords is None else blocked_keywords
    rules = [
        TextRule("repeated_characters", SeverityLevel.LOW, check_repeated_characters),
        TextRule("repeated_words", SeverityLevel.MEDIUM, check_repeated_words),
        TextRule("excessive_caps", SeverityLevel.LOW, check_caps),
        TextRule("links", SeverityLevel.MEDIUM, check_links),
    ]
    if keywords:
        rules.insert(0, TextRule("blocked_keyword", SeverityLevel.HIGH, _check_keywords(keywords)))
    return rules


class TextPolicy:
    """Evaluates text against the local rules and optional content-safety scores."""

    def __init__(self, rules: Optional[list[TextRule]] = None):
        self.rules = rules if rules is not None else default_rules()

    def evaluate(
        self,
        text: str,
        content_type: ContentType,
        safety_categories: Optional[dict[str, int]] = None,
    ) -> TextModerationResult:
        text = text or ""
        violations = []
        for rule in self.rules:
            matched = rule.check(text)
            if matched is not None:
                violations.append(RuleViolation(rule.name, rule.severity, matched))
        violations.sort(key=lambda v: SEVERITY_ORDER[v.severity], reverse=True)

        categories = dict(safety_categories or {})
        verdict = worst_verdict(
            *(verdict_for_severity(v.severity) for v in violations),
            *(verdict_for_safety_severity(s) for s in categories.values()),
        )
        return TextModerationResult(content_type, verdict, violations, categories)
