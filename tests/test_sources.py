"""Tests for loading raw audit events from exported files."""

import csv
import io
import json
from pathlib import Path

import pytest

from conftest import make_audit_data, make_ual_row
from mailaudit.core.errors import EventSourceError
from mailaudit.engine.aggregator import build_access_report
from mailaudit.engine.classifier import RiskClassifier
from mailaudit.engine.sources import load_events


def write_ual_csv(path: Path, rows: list[dict], preamble: str = "") -> Path:
    """Write rows as an exported UAL CSV (AuditData JSON quoted by csv)."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=["CreationDate", "UserIds", "Operations", "AuditData"])
    writer.writeheader()
    writer.writerows(rows)
    path.write_text(preamble + buffer.getvalue(), encoding="utf-8-sig")
    return path


class TestLoadEvents:
    """Tests for load_events() per format."""

    def test_csv_export(self, tmp_path: Path, classifier: RiskClassifier) -> None:
        path = write_ual_csv(tmp_path / "ual.csv", [make_ual_row(), make_ual_row()])
        events = load_events(path)
        assert len(events) == 2
        assert json.loads(events[0]["AuditData"])["MailboxOwnerUPN"] == "alice@contoso.com"

        report = build_access_report(events, classifier)
        assert report.rows[0].access_count == 2

    def test_csv_with_excel_sep_line(self, tmp_path: Path) -> None:
        path = write_ual_csv(tmp_path / "ual.csv", [make_ual_row()], preamble="sep=,\n")
        events = load_events(path)
        assert len(events) == 1
        assert "AuditData" in events[0]

    def test_json_array(self, tmp_path: Path) -> None:
        path = tmp_path / "events.json"
        path.write_text(json.dumps([make_audit_data(), make_audit_data()]))
        assert len(load_events(path)) == 2

    def test_json_value_wrapper(self, tmp_path: Path) -> None:
        path = tmp_path / "records.json"
        path.write_text(json.dumps({"value": [make_audit_data()]}))
        assert len(load_events(path)) == 1

    def test_json_lines_keeps_bad_lines_for_counting(
        self, tmp_path: Path, classifier: RiskClassifier
    ) -> None:
        path = tmp_path / "events.jsonl"
        path.write_text(
            json.dumps(make_audit_data()) + "\n{broken\n\n" + json.dumps(make_audit_data()) + "\n"
        )
        events = load_events(path)
        assert len(events) == 3

        report = build_access_report(events, classifier)
        assert report.skipped_events == 1
        assert report.rows[0].access_count == 2

    def test_limit(self, tmp_path: Path) -> None:
        path = tmp_path / "events.json"
        path.write_text(json.dumps([make_audit_data(time=f"t{i}") for i in range(10)]))
        events = load_events(path, limit=3)
        assert [e["CreationTime"] for e in events] == ["t0", "t1", "t2"]

    def test_empty_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.json"
        path.write_text("")
        assert load_events(path) == []

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(EventSourceError, match="not found"):
            load_events(tmp_path / "nope.csv")

    def test_unsupported_extension(self, tmp_path: Path) -> None:
        path = tmp_path / "events.xml"
        path.write_text("<xml/>")
        with pytest.raises(EventSourceError, match="Unsupported"):
            load_events(path)

    def test_json_scalar_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.json"
        path.write_text("42")
        with pytest.raises(EventSourceError):
            load_events(path)
