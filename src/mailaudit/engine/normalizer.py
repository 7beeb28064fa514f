"""Normalize raw MailItemsAccessed audit events into access records.

A raw event is a mapping in one of three shapes:
- an exported Unified Audit Log row, with the payload as a JSON string
  (or already-decoded mapping) under 'AuditData'
- a Microsoft Graph auditLogRecord, with the payload under 'auditData'
- a bare UAL payload with the fields at top level

Payload fields are preferred; envelope fields are a fallback.

Usage:
    from mailaudit.engine.normalizer import normalize_events

    result = normalize_events(raw_events, classifier)
    result.records   # list[AccessRecord]
    result.skipped   # number of malformed events
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from mailaudit.core.errors import MalformedEventError
from mailaudit.core.logging import get_logger
from mailaudit.engine.classifier import RiskClassifier, RiskLevel

logger = get_logger(__name__)

# Keys that may hold the UAL payload inside an envelope
AUDIT_DATA_KEYS = ("AuditData", "auditData")

# Candidate field names, in priority order
OWNER_FIELDS = ("MailboxOwnerUPN",)
ACCESSOR_FIELDS = ("UserId",)
TIME_FIELDS = ("CreationTime",)
CLIENT_APP_FIELDS = ("ClientInfoString", "AppId", "ClientAppId")
IP_FIELDS = ("ClientIPAddress", "ClientIP")

ENVELOPE_ACCESSOR_FIELDS = ("userPrincipalName", "UserIds")
ENVELOPE_TIME_FIELDS = ("createdDateTime", "CreationDate")
ENVELOPE_IP_FIELDS = ("clientIp", "ClientIP")


@dataclass
class AccessRecord:
    """One normalized mail access event (or, after aggregation, one group)."""

    mailbox_owner: str
    accessed_by: str
    access_time: str
    client_app: str = ""
    access_location: str = ""
    access_count: int = 1
    risk_level: RiskLevel = RiskLevel.LOW

    @property
    def key(self) -> tuple[str, str, str, str]:
        """Grouping key: (MailboxOwner, AccessedBy, ClientApp, AccessLocation)."""
        return (self.mailbox_owner, self.accessed_by, self.client_app, self.access_location)


@dataclass
class NormalizationResult:
    """Records produced from a batch, plus the malformed-event count."""

    records: list[AccessRecord] = field(default_factory=list)
    skipped: int = 0


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, bool)):
        return str(value)
    # Lists/dicts are not usable as identity values
    return ""


def _first_present(data: Mapping[str, Any], names: Iterable[str]) -> str:
    for name in names:
        text = _as_text(data.get(name))
        if text:
            return text
    return ""


def _decode_payload(raw: Any) -> tuple[Mapping[str, Any], Mapping[str, Any]]:
    """Split a raw event into (payload, envelope).

    Raises:
        MalformedEventError: If the event or its AuditData cannot be decoded
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedEventError(
                f"Audit event is not valid JSON: {e}", reason="invalid_json"
            ) from e

    if not isinstance(raw, Mapping):
        raise MalformedEventError(
            f"Audit event must be a mapping, got {type(raw).__name__}",
            reason="not_a_mapping",
        )

    for key in AUDIT_DATA_KEYS:
        if key not in raw:
            continue
        audit_data = raw[key]
        if isinstance(audit_data, str):
            if not audit_data.strip():
                raise MalformedEventError(
                    f"Audit event has an empty '{key}' payload", reason="empty_audit_data"
                )
            try:
                audit_data = json.loads(audit_data)
            except ValueError as e:
                raise MalformedEventError(
                    f"Could not decode '{key}' as JSON: {e}", reason="invalid_audit_data"
                ) from e
        if not isinstance(audit_data, Mapping):
            raise MalformedEventError(
                f"'{key}' must decode to an object, got {type(audit_data).__name__}",
                reason="invalid_audit_data",
            )
        return audit_data, raw

    return raw, {}


def normalize_event(raw: Any, classifier: RiskClassifier) -> AccessRecord:
    """Normalize one raw audit event and classify its client IP.

    Args:
        raw: Raw audit event (mapping or JSON text)
        classifier: RiskClassifier used for the RiskLevel field

    Returns:
        AccessRecord with access_count=1

    Raises:
        MalformedEventError: If the payload cannot be decoded or lacks
            the mailbox owner, accessor or timestamp
    """
    payload, envelope = _decode_payload(raw)

    mailbox_owner = _first_present(payload, OWNER_FIELDS)
    accessed_by = _first_present(payload, ACCESSOR_FIELDS) or _first_present(
        envelope, ENVELOPE_ACCESSOR_FIELDS
    )
    access_time = _first_present(payload, TIME_FIELDS) or _first_present(
        envelope, ENVELOPE_TIME_FIELDS
    )

    missing = [
        name
        for name, value in (
            ("MailboxOwner", mailbox_owner),
            ("AccessedBy", accessed_by),
            ("AccessTime", access_time),
        )
        if not value
    ]
    if missing:
        raise MalformedEventError(
            f"Audit event is missing required field(s): {', '.join(missing)}",
            reason="missing_fields",
        )

    access_location = _first_present(payload, IP_FIELDS) or _first_present(
        envelope, ENVELOPE_IP_FIELDS
    )

    return AccessRecord(
        mailbox_owner=mailbox_owner,
        accessed_by=accessed_by,
        access_time=access_time,
        client_app=_first_present(payload, CLIENT_APP_FIELDS),
        access_location=access_location,
        access_count=1,
        risk_level=classifier.classify(access_location),
    )


def normalize_events(raw_events: Iterable[Any], classifier: RiskClassifier) -> NormalizationResult:
    """Normalize a batch, skipping (and counting) malformed events.

    Order of the returned records matches the arrival order of the input.
    """
    result = NormalizationResult()
    for index, raw in enumerate(raw_events):
        try:
            result.records.append(normalize_event(raw, classifier))
        except MalformedEventError as e:
            result.skipped += 1
            logger.warning(
                "Skipping malformed audit event",
                index=index,
                reason=e.reason,
                error=str(e),
            )
    return result
