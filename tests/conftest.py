"""Pytest fixtures and configuration for mailaudit tests.

Provides common fixtures for configuration, raw audit events and classifiers.
"""

import json
import os
from pathlib import Path
from typing import Any, Generator

import pytest

from mailaudit.config import reset_config
from mailaudit.config_schema import AppConfig
from mailaudit.engine.classifier import RiskClassifier


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

auth:
  client_id: "test-client-id"
  tenant_id: "test-tenant-id"

tenant:
  accepted_domains: ["contoso.com"]

risk:
  high_risk_patterns: ['^185\\.220\\.', '^45\\.133\\.']
  medium_risk_patterns: ['^102\\.']
  policy: first_wins

report:
  output_dir: reports
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "auth": {
            "client_id": "test-client-id",
            "tenant_id": "test-tenant-id",
        },
        "tenant": {"accepted_domains": ["contoso.com"]},
        "risk": {
            "high_risk_patterns": [r"^185\.220\.", r"^45\.133\."],
            "medium_risk_patterns": [r"^102\."],
            "policy": "first_wins",
        },
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the MAILAUDIT_CONFIG_PATH environment variable."""
    old_value = os.environ.get("MAILAUDIT_CONFIG_PATH")
    os.environ["MAILAUDIT_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["MAILAUDIT_CONFIG_PATH"]
    else:
        os.environ["MAILAUDIT_CONFIG_PATH"] = old_value


@pytest.fixture
def classifier() -> RiskClassifier:
    """Return a classifier with the default high/medium patterns."""
    return RiskClassifier(
        high_risk_patterns=[r"^185\.220\.", r"^45\.133\."],
        medium_risk_patterns=[r"^102\."],
    )


def make_audit_data(
    owner: str = "alice@contoso.com",
    user: str = "mallory@contoso.com",
    time: str = "2024-05-01T10:00:00",
    app: str = "Client=OWA;Action=ViaProxy",
    ip: str = "8.8.8.8",
) -> dict[str, Any]:
    """Build a MailItemsAccessed AuditData payload."""
    return {
        "CreationTime": time,
        "Operation": "MailItemsAccessed",
        "MailboxOwnerUPN": owner,
        "UserId": user,
        "ClientInfoString": app,
        "ClientIPAddress": ip,
    }


def make_ual_row(**kwargs: Any) -> dict[str, Any]:
    """Build an exported UAL row with AuditData as a JSON string."""
    audit_data = make_audit_data(**kwargs)
    return {
        "CreationDate": audit_data["CreationTime"],
        "UserIds": audit_data["UserId"],
        "Operations": "MailItemsAccessed",
        "AuditData": json.dumps(audit_data),
    }
