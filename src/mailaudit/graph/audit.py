"""Fetch MailItemsAccessed records through the Graph audit log query API.

Audit log queries are asynchronous on the Graph side:
1. POST /security/auditLog/queries creates a query for a time window
2. GET /security/auditLog/queries/{id} reports its status
3. GET /security/auditLog/queries/{id}/records pages the results

Usage:
    from mailaudit.graph.audit import AuditLogSource

    source = AuditLogSource(graph_client, poll_interval=10, max_wait=900)
    records = source.fetch_mail_access(start, end, limit=5000)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from mailaudit.core.errors import AuditQueryError
from mailaudit.core.logging import get_logger

if TYPE_CHECKING:
    from mailaudit.config_schema import AuditQueryConfig
    from mailaudit.graph.client import GraphClient

logger = get_logger(__name__)

QUERIES_ENDPOINT = "/security/auditLog/queries"
MAIL_ACCESS_OPERATION = "MailItemsAccessed"

# Terminal statuses reported by Graph for an auditLogQuery
SUCCEEDED = "succeeded"
FAILED_STATUSES = {"failed", "cancelled"}


def format_graph_datetime(value: datetime) -> str:
    """Format a datetime as the UTC 'Z' string Graph expects."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def resolve_window(
    audit_config: AuditQueryConfig,
    start: datetime | None = None,
    end: datetime | None = None,
    hours: int | None = None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Work out the query window from explicit bounds, then config, then lookback.

    Returns:
        (start, end) as timezone-aware UTC datetimes
    """
    end = end or audit_config.end or now or datetime.now(UTC)
    if start is None:
        if hours is None and audit_config.start is not None:
            start = audit_config.start
        else:
            start = end - timedelta(hours=hours or audit_config.lookback_hours)
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    if end.tzinfo is None:
        end = end.replace(tzinfo=UTC)
    if start >= end:
        raise ValueError(
            f"Audit window start ({format_graph_datetime(start)}) must be earlier "
            f"than end ({format_graph_datetime(end)})"
        )
    return start, end


class AuditLogSource:
    """Runs audit log queries and pages their records.

    Attributes:
        client: GraphClient used for requests
        operation: Audit operation filter (MailItemsAccessed)
        poll_interval: Seconds between status checks
        max_wait: Seconds to wait for a query before giving up
    """

    def __init__(
        self,
        client: GraphClient,
        operation: str = MAIL_ACCESS_OPERATION,
        poll_interval: float = 10.0,
        max_wait: float = 900.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.operation = operation
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, client: GraphClient, audit_config: AuditQueryConfig) -> AuditLogSource:
        return cls(
            client,
            operation=audit_config.operation,
            poll_interval=audit_config.poll_interval_seconds,
            max_wait=audit_config.max_wait_seconds,
        )

    def create_query(self, start: datetime, end: datetime) -> str:
        """Create an audit log query and return its ID."""
        body = {
            "displayName": f"mailaudit {self.operation} {format_graph_datetime(start)}",
            "filterStartDateTime": format_graph_datetime(start),
            "filterEndDateTime": format_graph_datetime(end),
            "operationFilters": [self.operation],
        }
        response = self.client.post(QUERIES_ENDPOINT, json=body)
        query_id = response.get("id")
        if not query_id:
            raise AuditQueryError(
                "Graph did not return an ID for the new audit log query. "
                "Check that auditing is enabled for the tenant."
            )
        logger.info(
            "Audit log query created",
            query_id=query_id,
            operation=self.operation,
            start=body["filterStartDateTime"],
            end=body["filterEndDateTime"],
        )
        return query_id

    def wait_for_query(self, query_id: str) -> None:
        """Poll a query until it succeeds.

        Raises:
            AuditQueryError: If the query fails, is cancelled or exceeds max_wait
        """
        started = self._clock()
        while True:
            status = self.client.get(f"{QUERIES_ENDPOINT}/{query_id}").get("status", "")
            if status == SUCCEEDED:
                logger.info(
                    "Audit log query finished",
                    query_id=query_id,
                    waited_seconds=round(self._clock() - started, 1),
                )
                return
            if status in FAILED_STATUSES:
                raise AuditQueryError(
                    f"Audit log query {query_id} ended with status '{status}'. "
                    "Try a shorter time window.",
                    query_id=query_id,
                    status=status,
                )
            if self._clock() - started >= self.max_wait:
                raise AuditQueryError(
                    f"Audit log query {query_id} still '{status or 'unknown'}' after "
                    f"{self.max_wait:.0f}s. Increase audit.max_wait_seconds or narrow the window.",
                    query_id=query_id,
                    status=status,
                )
            logger.debug("Audit log query pending", query_id=query_id, status=status)
            self._sleep(self.poll_interval)

    def iter_record_pages(self, query_id: str, limit: int | None = None) -> Iterator[list[dict[str, Any]]]:
        """Yield pages of records, stopping once `limit` records have been yielded."""
        remaining = limit
        for page in self.client.iter_pages(f"{QUERIES_ENDPOINT}/{query_id}/records"):
            if remaining is not None:
                page = page[:remaining]
                remaining -= len(page)
            if page:
                yield page
            if remaining is not None and remaining <= 0:
                return

    def iter_mail_access_pages(
        self, start: datetime, end: datetime, limit: int | None = None
    ) -> Iterator[list[dict[str, Any]]]:
        """Create a query for the window, wait for it, then yield record pages."""
        query_id = self.create_query(start, end)
        self.wait_for_query(query_id)
        yield from self.iter_record_pages(query_id, limit=limit)

    def fetch_mail_access(
        self, start: datetime, end: datetime, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """Fetch all mail access records for the window (capped at `limit`)."""
        records: list[dict[str, Any]] = []
        for page in self.iter_mail_access_pages(start, end, limit=limit):
            records.extend(page)
        logger.info("Audit records fetched", records=len(records), limit=limit)
        return records
