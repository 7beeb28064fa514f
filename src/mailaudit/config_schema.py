"""Pydantic configuration schema for the mail access audit toolkit.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup.

Usage:
    from mailaudit.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from datetime import UTC, datetime
from typing import Literal

import regex
from pydantic import BaseModel, Field, field_validator, model_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

DEFAULT_HIGH_RISK_PATTERNS = [r"^185\.220\.", r"^45\.133\."]
DEFAULT_MEDIUM_RISK_PATTERNS = [r"^102\."]


class AuthConfig(BaseModel):
    """Azure AD authentication configuration."""

    client_id: str = Field(default="", description="Azure AD Application (client) ID")
    tenant_id: str = Field(
        default="organizations",
        description="Azure AD Directory (tenant) ID",
    )
    scopes: list[str] = Field(
        default=[
            "AuditLogsQuery.Read.All",
            "MailboxSettings.Read",
            "Domain.Read.All",
        ],
        description="Microsoft Graph API permission scopes",
    )
    token_cache_path: str = Field(
        default="data/token_cache.json",
        description="Path to MSAL token cache file",
    )
    graph_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Microsoft Graph base URL (use the beta endpoint if v1.0 lacks audit queries in your cloud)",
    )

    @field_validator("token_cache_path")
    @classmethod
    def validate_token_cache_path(cls, v: str) -> str:
        """Ensure token cache path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Token cache path cannot be empty")
        if ".." in v:
            raise ValueError("Token cache path cannot contain '..' (path traversal)")
        return v


class TenantConfig(BaseModel):
    """Tenant facts used by checks that need to tell internal from external."""

    accepted_domains: list[str] = Field(
        default_factory=list,
        description="Accepted domains; fetched from Graph /domains when empty",
    )

    @field_validator("accepted_domains")
    @classmethod
    def normalize_domains(cls, v: list[str]) -> list[str]:
        """Lowercase and drop blank entries."""
        return [d.strip().lower() for d in v if d and d.strip()]


class AuditQueryConfig(BaseModel):
    """Audit log query window and limits."""

    operation: str = Field(
        default="MailItemsAccessed",
        description="Audit operation to query",
    )
    lookback_hours: int = Field(
        default=24,
        ge=1,
        le=24 * 180,
        description="Window size when start/end are not given (hours)",
    )
    start: datetime | None = Field(default=None, description="Window start (ISO-8601)")
    end: datetime | None = Field(default=None, description="Window end (ISO-8601)")
    result_size: int = Field(
        default=5000,
        ge=1,
        le=50000,
        description="Maximum number of audit records to fetch",
    )
    poll_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        le=300,
        description="Delay between audit query status checks",
    )
    max_wait_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Give up on an audit query that is still running after this long",
    )

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        """Treat naive timestamps as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "AuditQueryConfig":
        """Ensure the window is not inverted."""
        if self.start and self.end and self.start >= self.end:
            raise ValueError("audit.start must be earlier than audit.end")
        return self


class RiskConfig(BaseModel):
    """IP risk classification patterns and aggregation policy."""

    high_risk_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_HIGH_RISK_PATTERNS),
        description="Regex patterns searched in the client IP text -> High",
    )
    medium_risk_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_MEDIUM_RISK_PATTERNS),
        description="Regex patterns searched in the client IP text -> Medium",
    )
    policy: Literal["first_wins", "max_risk"] = Field(
        default="first_wins",
        description="Row risk: first event in the group, or highest seen",
    )

    @field_validator("high_risk_patterns", "medium_risk_patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Reject blank patterns and patterns that don't compile."""
        for pattern in v:
            if not pattern or not pattern.strip():
                raise ValueError("Risk patterns cannot be empty")
            try:
                regex.compile(pattern)
            except regex.error as e:
                raise ValueError(f"Invalid risk pattern {pattern!r}: {e}") from e
        return v


class ReportConfig(BaseModel):
    """Report output configuration."""

    output_dir: str = Field(
        default="reports",
        description="Directory for exported CSV reports",
    )
    order: Literal["first_seen", "sorted"] = Field(
        default="first_seen",
        description="Row ordering: first appearance of each key, or sorted by key",
    )
    show_rows: int = Field(
        default=50,
        ge=0,
        le=10000,
        description="Rows to print in the console table (0 hides the table)",
    )


class AppConfig(BaseModel):
    """Root configuration schema.

    If validation fails on startup, the CLI exits with a clear error.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    auth: AuthConfig = Field(default_factory=AuthConfig)
    tenant: TenantConfig = Field(default_factory=TenantConfig)
    audit: AuditQueryConfig = Field(default_factory=AuditQueryConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
