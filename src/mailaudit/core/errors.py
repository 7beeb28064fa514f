"""Custom exception types for the mail access audit toolkit.

Messages follow the same layout everywhere:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance)
"""


class MailAuditError(Exception):
    """Base exception for all mail access audit errors."""

    pass


class ConfigValidationError(MailAuditError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(MailAuditError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class ConfigurationError(MailAuditError):
    """Raised when the risk classifier or aggregator is built with bad settings.

    Fatal at startup: a bad pattern, policy or order would affect every report row.

    Attributes:
        pattern: The offending pattern text (None for policy/order errors)
    """

    def __init__(self, message: str, pattern: str | None = None):
        super().__init__(message)
        self.pattern = pattern


class MalformedEventError(MailAuditError):
    """Raised when a raw audit event cannot be decoded into an access record.

    Never fatal for a batch: the normalizer skips the event and counts it.

    Attributes:
        reason: Short machine-friendly reason (e.g. 'invalid_audit_data')
    """

    def __init__(self, message: str, reason: str = "malformed"):
        super().__init__(message)
        self.reason = reason


class EventSourceError(MailAuditError):
    """Raised when an exported audit file cannot be read."""

    pass


class AuthenticationError(MailAuditError):
    """Raised when MSAL device code flow fails or tokens cannot be acquired."""

    pass


class GraphAPIError(MailAuditError):
    """Raised when Microsoft Graph API returns an error.

    Attributes:
        status_code: HTTP status code from the API
        error_code: Error code from Graph API response (if available)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class AuditQueryError(MailAuditError):
    """Raised when a Graph audit log query fails or does not finish in time.

    Attributes:
        query_id: The audit log query ID (if one was created)
        status: Last status reported by Graph ('failed', 'cancelled', 'running', ...)
    """

    def __init__(self, message: str, query_id: str | None = None, status: str | None = None):
        super().__init__(message)
        self.query_id = query_id
        self.status = status
