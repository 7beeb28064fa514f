"""IP-based risk classification for mail access events.

Classifies a client IP address into a risk tier by textual pattern matching.
This is not a CIDR containment check: each configured pattern
is a regular expression searched anywhere in the IP text, so plain substrings
('185.220.') and anchored prefixes ('^185\\.220\\.') both work.

Rules are ordered and the first match wins:
1. Any high-risk pattern matches -> High
2. Any medium-risk pattern matches -> Medium
3. Otherwise -> Low (including empty or non-IP text)

Usage:
    from mailaudit.engine.classifier import RiskClassifier, RiskLevel

    classifier = RiskClassifier(
        high_risk_patterns=[r"^185\\.220\\.", r"^45\\.133\\."],
        medium_risk_patterns=[r"^102\\."],
    )
    classifier.classify("185.220.1.1")  # RiskLevel.HIGH
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING

import regex

from mailaudit.core.errors import ConfigurationError
from mailaudit.core.logging import get_logger

if TYPE_CHECKING:
    from mailaudit.config_schema import RiskConfig

logger = get_logger(__name__)

# Per-pattern evaluation timeout (seconds)
PATTERN_TIMEOUT_SECONDS = 0.5


class RiskLevel(str, Enum):
    """Risk tier assigned to a single access event."""

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        """Numeric ordering (Low=0, Medium=1, High=2) for max-risk comparisons."""
        return _RISK_RANK[self]


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


def compile_patterns(patterns: Iterable[str], tier: str) -> list[regex.Pattern]:
    """Compile a list of risk patterns.

    Args:
        patterns: Pattern strings from configuration
        tier: Tier name used in error messages ('high' or 'medium')

    Returns:
        List of compiled case-insensitive patterns

    Raises:
        ConfigurationError: If a pattern is empty or has invalid syntax
    """
    compiled = []
    for pattern in patterns:
        if not isinstance(pattern, str) or not pattern.strip():
            raise ConfigurationError(
                f"Empty {tier}-risk pattern in risk configuration. "
                "Remove the blank entry from the pattern list.",
                pattern=str(pattern),
            )
        try:
            compiled.append(regex.compile(pattern, regex.IGNORECASE))
        except regex.error as e:
            raise ConfigurationError(
                f"Invalid {tier}-risk pattern {pattern!r}: {e}. "
                "Patterns are regular expressions; escape literal dots as '\\.'.",
                pattern=pattern,
            ) from e
    return compiled


class RiskClassifier:
    """Assigns High/Medium/Low to a client IP string.

    The classifier is total: classify() returns a RiskLevel for every string,
    including empty strings, IPv6 text and garbage. Construction fails fast
    with ConfigurationError when a pattern cannot be compiled.

    Attributes:
        high_risk_patterns: Raw high-risk pattern strings
        medium_risk_patterns: Raw medium-risk pattern strings
    """

    def __init__(
        self,
        high_risk_patterns: Iterable[str] = (),
        medium_risk_patterns: Iterable[str] = (),
    ):
        self.high_risk_patterns = list(high_risk_patterns)
        self.medium_risk_patterns = list(medium_risk_patterns)
        self._high = compile_patterns(self.high_risk_patterns, "high")
        self._medium = compile_patterns(self.medium_risk_patterns, "medium")

        logger.debug(
            "RiskClassifier initialized",
            high_patterns=len(self._high),
            medium_patterns=len(self._medium),
        )

    @classmethod
    def from_config(cls, risk_config: RiskConfig) -> RiskClassifier:
        """Build a classifier from the `risk` config section."""
        return cls(
            high_risk_patterns=risk_config.high_risk_patterns,
            medium_risk_patterns=risk_config.medium_risk_patterns,
        )

    def classify(self, ip_address: str | None) -> RiskLevel:
        """Classify a client IP address.

        Args:
            ip_address: Client IP text (may be empty, None or malformed)

        Returns:
            The first matching tier, or RiskLevel.LOW
        """
        text = ip_address or ""
        if not isinstance(text, str):
            text = str(text)
        if not text:
            return RiskLevel.LOW

        if self._matches_any(self._high, text):
            return RiskLevel.HIGH
        if self._matches_any(self._medium, text):
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def _matches_any(self, patterns: list[regex.Pattern], text: str) -> bool:
        for pattern in patterns:
            try:
                if pattern.search(text, timeout=PATTERN_TIMEOUT_SECONDS):
                    return True
            except TimeoutError:
                # A timed-out pattern counts as no match
                logger.warning(
                    "Risk pattern timed out",
                    pattern=pattern.pattern,
                    ip_length=len(text),
                )
        return False
