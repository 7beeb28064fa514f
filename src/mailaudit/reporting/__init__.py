"""Report exporters."""

from mailaudit.reporting.csv_export import (
    REPORT_FIELDS,
    export_access_report,
    read_access_report,
    write_access_report,
)

__all__ = [
    "REPORT_FIELDS",
    "export_access_report",
    "read_access_report",
    "write_access_report",
]
