"""Load raw audit events from exported files.

Supported formats (by extension):
- .json           JSON array, or an object with a 'value' array (Graph-style)
- .jsonl, .ndjson One JSON object per line
- .csv            Unified Audit Log export (AuditData column holds the JSON payload)

CSV exports from the Purview portal sometimes start with an Excel 'sep=,'
line and a BOM; both are tolerated.

Usage:
    from mailaudit.engine.sources import load_events

    events = load_events(Path("exports/ual.csv"), limit=5000)
"""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path
from typing import Any

from mailaudit.core.errors import EventSourceError
from mailaudit.core.logging import get_logger

logger = get_logger(__name__)

JSON_EXTENSIONS = {".json"}
JSON_LINES_EXTENSIONS = {".jsonl", ".ndjson"}
CSV_EXTENSIONS = {".csv"}


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8-sig")
    except FileNotFoundError as e:
        raise EventSourceError(f"Audit export not found: {path}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise EventSourceError(
            f"Could not read audit export {path}: {e}. "
            "Re-export the audit log as UTF-8 CSV or JSON."
        ) from e


def _load_json(text: str, path: Path) -> list[Any]:
    if not text.strip():
        return []
    try:
        data = json.loads(text)
    except ValueError as e:
        raise EventSourceError(f"Audit export {path} is not valid JSON: {e}") from e

    if isinstance(data, dict) and isinstance(data.get("value"), list):
        return data["value"]
    if isinstance(data, list):
        return data
    raise EventSourceError(
        f"Audit export {path} must contain a JSON array of events "
        f"(or an object with a 'value' array), got {type(data).__name__}"
    )


def _load_json_lines(text: str) -> list[Any]:
    events: list[Any] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            events.append(json.loads(line))
        except ValueError:
            # Left as text; the normalizer counts it as malformed
            events.append(line)
    return events


def _load_csv(text: str) -> list[Any]:
    lines = text.splitlines(keepends=True)
    if lines and lines[0].strip().lower().startswith("sep="):
        lines = lines[1:]
    reader = csv.DictReader(io.StringIO("".join(lines)))
    return [dict(row) for row in reader]


def load_events(path: Path, limit: int | None = None) -> list[Any]:
    """Load raw audit events from an exported file.

    Args:
        path: Export file (.json, .jsonl/.ndjson or .csv)
        limit: Maximum number of events to return (None for all)

    Returns:
        Raw events in file order

    Raises:
        EventSourceError: If the file is missing, unreadable or has an
            unsupported extension
    """
    suffix = path.suffix.lower()
    if suffix not in JSON_EXTENSIONS | JSON_LINES_EXTENSIONS | CSV_EXTENSIONS:
        raise EventSourceError(
            f"Unsupported audit export format '{suffix or path.name}'. "
            "Use .csv (Unified Audit Log export), .json or .jsonl."
        )

    text = _read_text(path)
    if suffix in JSON_EXTENSIONS:
        events = _load_json(text, path)
    elif suffix in JSON_LINES_EXTENSIONS:
        events = _load_json_lines(text)
    else:
        events = _load_csv(text)

    total = len(events)
    if limit is not None:
        events = events[:limit]

    logger.info(
        "Audit events loaded from file",
        path=str(path),
        format=suffix.lstrip("."),
        events=len(events),
        truncated=total - len(events),
    )
    return events
