"""Group, count and order mail access records into report rows.

Records are folded left to right into a table keyed by
(MailboxOwner, AccessedBy, ClientApp, AccessLocation). The first record seen
for a key is the group's representative; its access_count is replaced by the
group size and every other field is kept as-is.

Under the default 'first_wins' policy the row's risk_level is the first
event's risk_level, even when a later event in the same group classified
higher. The 'max_risk' policy keeps the highest tier seen instead.

Usage:
    from mailaudit.engine.aggregator import AccessAggregator, build_access_report

    report = build_access_report(raw_events, classifier)

    # Or page by page:
    aggregator = AccessAggregator()
    for page in pages:
        aggregator.feed(normalize_events(page, classifier).records)
    rows = aggregator.rows()
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from mailaudit.core.errors import ConfigurationError
from mailaudit.core.logging import get_logger
from mailaudit.engine.classifier import RiskClassifier, RiskLevel
from mailaudit.engine.normalizer import AccessRecord, normalize_events

logger = get_logger(__name__)

RiskPolicy = Literal["first_wins", "max_risk"]
RowOrder = Literal["first_seen", "sorted"]


@dataclass
class _Group:
    representative: AccessRecord
    count: int = 0
    max_risk: RiskLevel = RiskLevel.LOW


@dataclass
class AccessReport:
    """Aggregated access report for one run."""

    rows: list[AccessRecord] = field(default_factory=list)
    total_events: int = 0
    skipped_events: int = 0
    policy: RiskPolicy = "first_wins"
    order: RowOrder = "first_seen"

    @property
    def parsed_events(self) -> int:
        """Number of events that normalized successfully."""
        return self.total_events - self.skipped_events

    def risk_summary(self) -> dict[str, int]:
        """Row counts per risk tier, High first."""
        summary = {level.value: 0 for level in (RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW)}
        for row in self.rows:
            summary[row.risk_level.value] += 1
        return summary


class AccessAggregator:
    """Accumulates access records into one row per grouping key.

    feed() may be called any number of times; later batches merge into the
    same accumulator and the representative stays the first record overall.
    Groups are kept in insertion order, which is the 'first_seen' order.
    """

    def __init__(self, policy: RiskPolicy = "first_wins", order: RowOrder = "first_seen"):
        if policy not in ("first_wins", "max_risk"):
            raise ConfigurationError(
                f"Unknown risk policy {policy!r}; use 'first_wins' or 'max_risk'"
            )
        if order not in ("first_seen", "sorted"):
            raise ConfigurationError(
                f"Unknown row order {order!r}; use 'first_seen' or 'sorted'"
            )
        self.policy: RiskPolicy = policy
        self.order: RowOrder = order
        self._groups: dict[tuple[str, str, str, str], _Group] = {}
        self._record_count = 0

    @property
    def record_count(self) -> int:
        """Total number of records fed so far."""
        return self._record_count

    def __len__(self) -> int:
        return len(self._groups)

    def feed(self, records: Iterable[AccessRecord]) -> None:
        """Merge a batch of records (in arrival order) into the accumulator."""
        for record in records:
            group = self._groups.get(record.key)
            if group is None:
                group = _Group(representative=record, max_risk=record.risk_level)
                self._groups[record.key] = group
            elif record.risk_level.rank > group.max_risk.rank:
                group.max_risk = record.risk_level
            group.count += 1
            self._record_count += 1

    def rows(self) -> list[AccessRecord]:
        """Emit one row per group.

        Representatives are copied, so calling rows() twice (or feeding more
        records afterwards) never mutates previously returned rows.
        """
        rows = []
        for group in self._groups.values():
            changes: dict[str, Any] = {"access_count": group.count}
            if self.policy == "max_risk":
                changes["risk_level"] = group.max_risk
            rows.append(replace(group.representative, **changes))

        if self.order == "sorted":
            rows.sort(key=lambda row: row.key)
        return rows


def build_access_report(
    raw_events: Iterable[Any],
    classifier: RiskClassifier,
    policy: RiskPolicy = "first_wins",
    order: RowOrder = "first_seen",
) -> AccessReport:
    """Normalize, classify and aggregate one batch of raw audit events.

    Malformed events are skipped and counted; an empty batch yields an
    empty report.

    Args:
        raw_events: Raw MailItemsAccessed audit events in arrival order
        classifier: RiskClassifier for per-event risk levels
        policy: 'first_wins' (row keeps the first event's risk) or 'max_risk'
        order: 'first_seen' or 'sorted' row ordering

    Returns:
        AccessReport with rows and event counters
    """
    events = list(raw_events)
    normalized = normalize_events(events, classifier)

    aggregator = AccessAggregator(policy=policy, order=order)
    aggregator.feed(normalized.records)

    report = AccessReport(
        rows=aggregator.rows(),
        total_events=len(events),
        skipped_events=normalized.skipped,
        policy=policy,
        order=order,
    )

    logger.info(
        "Access report built",
        total_events=report.total_events,
        skipped_events=report.skipped_events,
        rows=len(report.rows),
        policy=policy,
    )
    return report
