"""CSV export of mail access reports.

Header and column order are fixed:
    MailboxOwner,AccessedBy,AccessTime,ClientApp,AccessLocation,AccessCount,RiskLevel

Fields containing the delimiter, quotes or newlines are quoted by the csv
module. Files are written as UTF-8 with BOM so they open cleanly in Excel;
streams are written as-is.
"""

from __future__ import annotations

import csv
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from mailaudit.core.logging import get_logger
from mailaudit.engine.classifier import RiskLevel
from mailaudit.engine.normalizer import AccessRecord

if TYPE_CHECKING:
    from mailaudit.engine.aggregator import AccessReport

logger = get_logger(__name__)

REPORT_FIELDS = [
    "MailboxOwner",
    "AccessedBy",
    "AccessTime",
    "ClientApp",
    "AccessLocation",
    "AccessCount",
    "RiskLevel",
]


def row_to_dict(row: AccessRecord) -> dict[str, str | int]:
    """Map an AccessRecord onto the report column names."""
    return {
        "MailboxOwner": row.mailbox_owner,
        "AccessedBy": row.accessed_by,
        "AccessTime": row.access_time,
        "ClientApp": row.client_app,
        "AccessLocation": row.access_location,
        "AccessCount": row.access_count,
        "RiskLevel": row.risk_level.value,
    }


def write_access_report(rows: Iterable[AccessRecord], stream: TextIO) -> int:
    """Write header plus one line per row to a text stream.

    Returns:
        Number of data rows written
    """
    writer = csv.DictWriter(stream, fieldnames=REPORT_FIELDS, lineterminator="\n")
    writer.writeheader()
    count = 0
    for row in rows:
        writer.writerow(row_to_dict(row))
        count += 1
    return count


def export_access_report(report: AccessReport, path: Path) -> Path:
    """Write a report to a CSV file, creating parent directories.

    An empty report still produces a header-only file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8-sig") as fh:
        written = write_access_report(report.rows, fh)

    logger.info("Access report exported", path=str(path), rows=written)
    return path


def read_access_report(path: Path) -> list[AccessRecord]:
    """Parse a report CSV back into AccessRecords by column name."""
    with open(path, newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh)
        return [
            AccessRecord(
                mailbox_owner=line["MailboxOwner"],
                accessed_by=line["AccessedBy"],
                access_time=line["AccessTime"],
                client_app=line.get("ClientApp") or "",
                access_location=line.get("AccessLocation") or "",
                access_count=int(line["AccessCount"]),
                risk_level=RiskLevel(line["RiskLevel"]),
            )
            for line in reader
        ]
