"""Detect inbox rules that forward mail outside the tenant.

A recipient is internal when its domain equals an accepted domain or is a
subdomain of one (case-insensitive). Accepted domains are passed in
explicitly; there is no process-wide tenant state.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from mailaudit.core.logging import get_logger

logger = get_logger(__name__)

# Graph messageRuleActions properties that send mail elsewhere
FORWARDING_ACTIONS = ("forwardTo", "forwardAsAttachmentTo", "redirectTo")


@dataclass(frozen=True)
class ForwardingFinding:
    """One external recipient reached by a forwarding inbox rule."""

    mailbox: str
    rule_name: str
    action: str
    recipient: str
    enabled: bool = True


def extract_domain(address: str) -> str:
    """Return the lowercased domain of an email address ('' if none)."""
    address = (address or "").strip()
    if address.lower().startswith("smtp:"):
        address = address[5:]
    if "@" not in address:
        return ""
    return address.rsplit("@", 1)[1].strip().lower().rstrip(".")


def is_external(address: str, accepted_domains: Iterable[str]) -> bool:
    """Check whether an address falls outside every accepted domain.

    Addresses without a domain are treated as internal (e.g. legacy X.500
    recipients that Exchange resolves inside the tenant).
    """
    domain = extract_domain(address)
    if not domain:
        return False
    for accepted in accepted_domains:
        accepted = accepted.strip().lower().rstrip(".")
        if not accepted:
            continue
        if domain == accepted or domain.endswith("." + accepted):
            return False
    return True


def _recipient_addresses(recipients: Any) -> list[str]:
    addresses = []
    for recipient in recipients or []:
        if not isinstance(recipient, Mapping):
            continue
        email = recipient.get("emailAddress") or {}
        address = email.get("address") if isinstance(email, Mapping) else None
        if address:
            addresses.append(address)
    return addresses


def find_external_forwarding(
    mailbox: str,
    rules: Iterable[Mapping[str, Any]],
    accepted_domains: Iterable[str],
) -> list[ForwardingFinding]:
    """Find inbox rules forwarding or redirecting to external recipients.

    Args:
        mailbox: Mailbox UPN the rules belong to
        rules: Graph messageRule objects
        accepted_domains: Tenant accepted domains

    Returns:
        One finding per external recipient per action, in rule order
    """
    domains = list(accepted_domains)
    findings: list[ForwardingFinding] = []
    for rule in rules:
        actions = rule.get("actions") or {}
        if not isinstance(actions, Mapping):
            continue
        for action in FORWARDING_ACTIONS:
            for address in _recipient_addresses(actions.get(action)):
                if is_external(address, domains):
                    findings.append(
                        ForwardingFinding(
                            mailbox=mailbox,
                            rule_name=rule.get("displayName") or rule.get("id") or "(unnamed)",
                            action=action,
                            recipient=address,
                            enabled=bool(rule.get("isEnabled", True)),
                        )
                    )

    if findings:
        logger.info("External forwarding found", mailbox=mailbox, findings=len(findings))
    return findings

