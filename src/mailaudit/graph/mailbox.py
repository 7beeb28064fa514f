"""Mailbox and tenant lookups used by the forwarding check."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from mailaudit.core.logging import get_logger

if TYPE_CHECKING:
    from mailaudit.graph.client import GraphClient

logger = get_logger(__name__)


class MailboxManager:
    """Reads inbox rules and verified tenant domains from Graph."""

    def __init__(self, client: GraphClient):
        self.client = client

    def list_inbox_rules(self, user: str) -> list[dict[str, Any]]:
        """Return the inbox message rules of a mailbox (by UPN or object ID)."""
        endpoint = f"/users/{quote(user)}/mailFolders/inbox/messageRules"
        rules = self.client.paginate(endpoint)
        logger.debug("Inbox rules fetched", user=user, rules=len(rules))
        return rules

    def list_accepted_domains(self) -> list[str]:
        """Return the tenant's verified domain names, lowercased."""
        domains = self.client.paginate("/domains", params={"$select": "id,isVerified"})
        accepted = [d["id"].lower() for d in domains if d.get("id") and d.get("isVerified", True)]
        logger.info("Accepted domains fetched", domains=len(accepted))
        return accepted
