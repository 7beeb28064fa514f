"""Mail access processing.

- Risk classifier for client IPs
- Normalizer from raw audit events to access records
- Aggregator that deduplicates records into report rows
- File source for exported audit logs
- External forwarding rule check
"""

from mailaudit.engine.aggregator import AccessAggregator, AccessReport, build_access_report
from mailaudit.engine.classifier import RiskClassifier, RiskLevel
from mailaudit.engine.forwarding import ForwardingFinding, find_external_forwarding
from mailaudit.engine.normalizer import (
    AccessRecord,
    NormalizationResult,
    normalize_event,
    normalize_events,
)
from mailaudit.engine.sources import load_events

__all__ = [
    # Aggregation
    "AccessAggregator",
    "AccessReport",
    "build_access_report",
    # Classification
    "RiskClassifier",
    "RiskLevel",
    # Normalization
    "AccessRecord",
    "NormalizationResult",
    "normalize_event",
    "normalize_events",
    # Sources
    "load_events",
    # Forwarding
    "ForwardingFinding",
    "find_external_forwarding",
]
