"""Tests for grouping, counting and ordering access records.

Includes the end-to-end scenarios for build_access_report() and the
first-wins risk behavior, which is kept on purpose.
"""

import random
from collections import Counter

import pytest

from conftest import make_ual_row
from mailaudit.core.errors import ConfigurationError
from mailaudit.engine.aggregator import AccessAggregator, build_access_report
from mailaudit.engine.classifier import RiskClassifier, RiskLevel
from mailaudit.engine.normalizer import AccessRecord, normalize_events


def make_record(
    owner: str = "alice@contoso.com",
    user: str = "mallory@contoso.com",
    app: str = "OWA",
    ip: str = "8.8.8.8",
    time: str = "2024-05-01T10:00:00",
    risk: RiskLevel = RiskLevel.LOW,
) -> AccessRecord:
    """Create a normalized AccessRecord."""
    return AccessRecord(
        mailbox_owner=owner,
        accessed_by=user,
        access_time=time,
        client_app=app,
        access_location=ip,
        risk_level=risk,
    )


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestBuildAccessReport:
    """End-to-end scenarios from raw events to rows."""

    def test_duplicate_high_risk_events_collapse(self, classifier: RiskClassifier) -> None:
        events = [make_ual_row(ip="185.220.1.1"), make_ual_row(ip="185.220.1.1")]
        report = build_access_report(events, classifier)
        assert len(report.rows) == 1
        assert report.rows[0].access_count == 2
        assert report.rows[0].risk_level == RiskLevel.HIGH

    def test_single_medium_risk_event(self, classifier: RiskClassifier) -> None:
        events = [
            make_ual_row(ip="8.8.8.8"),
            make_ual_row(owner="bob@contoso.com", ip="102.54.3.9"),
        ]
        report = build_access_report(events, classifier)
        medium = [row for row in report.rows if row.access_location == "102.54.3.9"]
        assert len(medium) == 1
        assert medium[0].access_count == 1
        assert medium[0].risk_level == RiskLevel.MEDIUM

    def test_single_low_risk_event(self, classifier: RiskClassifier) -> None:
        report = build_access_report([make_ual_row(ip="8.8.8.8")], classifier)
        assert report.rows[0].risk_level == RiskLevel.LOW

    def test_empty_batch(self, classifier: RiskClassifier) -> None:
        report = build_access_report([], classifier)
        assert report.rows == []
        assert report.total_events == 0
        assert report.skipped_events == 0

    def test_malformed_event_is_skipped(self, classifier: RiskClassifier) -> None:
        events = [make_ual_row(), {"AuditData": "{oops"}, make_ual_row()]
        report = build_access_report(events, classifier)
        assert len(report.rows) == 1
        assert report.rows[0].access_count == 2
        assert report.skipped_events == 1
        assert report.total_events == 3
        assert report.parsed_events == 2

    def test_representative_is_first_event(self, classifier: RiskClassifier) -> None:
        events = [
            make_ual_row(time="2024-05-01T09:00:00"),
            make_ual_row(time="2024-05-01T08:00:00"),
            make_ual_row(time="2024-05-01T11:00:00"),
        ]
        report = build_access_report(events, classifier)
        assert report.rows[0].access_time == "2024-05-01T09:00:00"
        assert report.rows[0].access_count == 3

    def test_first_wins_keeps_first_risk(self) -> None:
        """A Low first access followed by a High one in the same group reports Low."""
        aggregator = AccessAggregator()
        aggregator.feed(
            [
                make_record(risk=RiskLevel.LOW),
                make_record(risk=RiskLevel.HIGH),
            ]
        )
        rows = aggregator.rows()
        assert len(rows) == 1
        assert rows[0].risk_level == RiskLevel.LOW
        assert rows[0].access_count == 2

    def test_max_risk_policy(self) -> None:
        aggregator = AccessAggregator(policy="max_risk")
        aggregator.feed(
            [
                make_record(risk=RiskLevel.LOW),
                make_record(risk=RiskLevel.HIGH),
                make_record(risk=RiskLevel.MEDIUM),
            ]
        )
        assert aggregator.rows()[0].risk_level == RiskLevel.HIGH

    def test_idempotent(self, classifier: RiskClassifier) -> None:
        events = [make_ual_row(ip="185.220.1.1"), make_ual_row(owner="b@contoso.com")]
        assert build_access_report(events, classifier).rows == build_access_report(
            events, classifier
        ).rows

    def test_risk_summary(self, classifier: RiskClassifier) -> None:
        events = [
            make_ual_row(ip="185.220.1.1"),
            make_ual_row(ip="102.1.1.1"),
            make_ual_row(ip="8.8.8.8"),
            make_ual_row(ip="9.9.9.9"),
        ]
        summary = build_access_report(events, classifier).risk_summary()
        assert summary == {"High": 1, "Medium": 1, "Low": 2}


# ---------------------------------------------------------------------------
# Aggregator properties
# ---------------------------------------------------------------------------


class TestAccessAggregator:
    """Tests for the key->group accumulator."""

    @pytest.fixture
    def shuffled_records(self) -> list[AccessRecord]:
        """A deterministic mix of repeated and unique keys."""
        rng = random.Random(7)
        owners = ["alice@contoso.com", "bob@contoso.com"]
        users = ["mallory@contoso.com", "eve@contoso.com"]
        apps = ["OWA", "REST"]
        ips = ["185.220.1.1", "8.8.8.8", ""]
        return [
            make_record(
                owner=rng.choice(owners),
                user=rng.choice(users),
                app=rng.choice(apps),
                ip=rng.choice(ips),
                time=f"2024-05-01T10:{i:02d}:00",
            )
            for i in range(60)
        ]

    def test_rows_match_distinct_keys(self, shuffled_records: list[AccessRecord]) -> None:
        aggregator = AccessAggregator()
        aggregator.feed(shuffled_records)
        rows = aggregator.rows()

        counts = Counter(record.key for record in shuffled_records)
        assert len(rows) == len(counts)
        assert len({row.key for row in rows}) == len(rows)
        for row in rows:
            assert row.access_count == counts[row.key]

    def test_first_seen_order(self, shuffled_records: list[AccessRecord]) -> None:
        aggregator = AccessAggregator()
        aggregator.feed(shuffled_records)

        first_seen: list[tuple[str, str, str, str]] = []
        for record in shuffled_records:
            if record.key not in first_seen:
                first_seen.append(record.key)
        assert [row.key for row in aggregator.rows()] == first_seen

    def test_representative_time_is_first(self, shuffled_records: list[AccessRecord]) -> None:
        aggregator = AccessAggregator()
        aggregator.feed(shuffled_records)

        first_time: dict[tuple[str, str, str, str], str] = {}
        for record in shuffled_records:
            first_time.setdefault(record.key, record.access_time)
        for row in aggregator.rows():
            assert row.access_time == first_time[row.key]

    def test_sorted_order(self, shuffled_records: list[AccessRecord]) -> None:
        aggregator = AccessAggregator(order="sorted")
        aggregator.feed(shuffled_records)
        keys = [row.key for row in aggregator.rows()]
        assert keys == sorted(keys)

    def test_incremental_feeding_matches_single_batch(
        self, shuffled_records: list[AccessRecord]
    ) -> None:
        single = AccessAggregator()
        single.feed(shuffled_records)

        paged = AccessAggregator()
        for start in range(0, len(shuffled_records), 7):
            paged.feed(shuffled_records[start : start + 7])

        assert paged.rows() == single.rows()
        assert paged.record_count == len(shuffled_records)

    def test_rows_do_not_mutate_inputs(self) -> None:
        record = make_record()
        aggregator = AccessAggregator()
        aggregator.feed([record, make_record()])
        aggregator.rows()
        assert record.access_count == 1

    def test_feed_after_rows(self) -> None:
        aggregator = AccessAggregator()
        aggregator.feed([make_record()])
        first = aggregator.rows()
        aggregator.feed([make_record()])
        assert first[0].access_count == 1
        assert aggregator.rows()[0].access_count == 2

    def test_empty_ip_is_part_of_key(self) -> None:
        aggregator = AccessAggregator()
        aggregator.feed([make_record(ip=""), make_record(ip="8.8.8.8")])
        assert len(aggregator) == 2

    def test_unknown_policy_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="newest"):
            AccessAggregator(policy="newest")  # type: ignore[arg-type]

    def test_unknown_order_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="by_time"):
            AccessAggregator(order="by_time")  # type: ignore[arg-type]

    def test_normalized_pages_merge(self, classifier: RiskClassifier) -> None:
        """Feeding normalized pages keeps the first event overall as representative."""
        page1 = [make_ual_row(time="2024-05-01T01:00:00")]
        page2 = [make_ual_row(time="2024-05-01T00:00:00"), make_ual_row(owner="b@contoso.com")]
        aggregator = AccessAggregator()
        for page in (page1, page2):
            aggregator.feed(normalize_events(page, classifier).records)
        rows = aggregator.rows()
        assert rows[0].access_time == "2024-05-01T01:00:00"
        assert rows[0].access_count == 2
        assert rows[1].mailbox_owner == "b@contoso.com"
