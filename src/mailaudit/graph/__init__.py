"""Microsoft Graph API access.

- Base client with error handling and pagination
- Audit log query source for MailItemsAccessed records
- Mailbox lookups (inbox rules, accepted domains)

Usage:
    from mailaudit.auth import GraphAuth
    from mailaudit.graph import AuditLogSource, GraphClient

    client = GraphClient(GraphAuth(client_id, tenant_id, scopes, cache_path))
    records = AuditLogSource(client).fetch_mail_access(start, end, limit=5000)
"""

from mailaudit.graph.audit import AuditLogSource
from mailaudit.graph.client import GraphClient
from mailaudit.graph.mailbox import MailboxManager

__all__ = [
    "AuditLogSource",
    "GraphClient",
    "MailboxManager",
]
