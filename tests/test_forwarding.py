"""Tests for the external forwarding rule check."""

from typing import Any

from mailaudit.engine.forwarding import (
    extract_domain,
    find_external_forwarding,
    is_external,
)

ACCEPTED = ["contoso.com", "contoso.onmicrosoft.com"]


def make_rule(name: str = "Rule", enabled: bool = True, **actions: list[str]) -> dict[str, Any]:
    """Build a Graph messageRule with recipient lists per action."""
    return {
        "id": f"id-{name}",
        "displayName": name,
        "isEnabled": enabled,
        "actions": {
            action: [{"emailAddress": {"name": addr, "address": addr}} for addr in addresses]
            for action, addresses in actions.items()
        },
    }


class TestDomainHelpers:
    def test_extract_domain(self) -> None:
        assert extract_domain("Bob@Fabrikam.COM") == "fabrikam.com"
        assert extract_domain("smtp:bob@fabrikam.com") == "fabrikam.com"
        assert extract_domain("no-at-sign") == ""

    def test_is_external(self) -> None:
        assert is_external("x@gmail.com", ACCEPTED)
        assert not is_external("x@contoso.com", ACCEPTED)
        assert not is_external("x@CONTOSO.com", ACCEPTED)

    def test_subdomain_is_internal(self) -> None:
        assert not is_external("x@eu.contoso.com", ACCEPTED)

    def test_lookalike_domain_is_external(self) -> None:
        assert is_external("x@evilcontoso.com", ACCEPTED)

    def test_address_without_domain_is_internal(self) -> None:
        assert not is_external("/o=ExchangeLabs/ou=Exchange", ACCEPTED)


class TestFindExternalForwarding:
    def test_detects_external_forward(self) -> None:
        rules = [make_rule("Fwd", forwardTo=["attacker@gmail.com", "boss@contoso.com"])]
        findings = find_external_forwarding("alice@contoso.com", rules, ACCEPTED)
        assert len(findings) == 1
        assert findings[0].recipient == "attacker@gmail.com"
        assert findings[0].action == "forwardTo"
        assert findings[0].rule_name == "Fwd"
        assert findings[0].mailbox == "alice@contoso.com"

    def test_redirect_and_attachment_forwarding(self) -> None:
        rules = [
            make_rule("A", redirectTo=["a@fabrikam.com"]),
            make_rule("B", enabled=False, forwardAsAttachmentTo=["b@fabrikam.com"]),
        ]
        findings = find_external_forwarding("alice@contoso.com", rules, ACCEPTED)
        assert [(f.rule_name, f.action, f.enabled) for f in findings] == [
            ("A", "redirectTo", True),
            ("B", "forwardAsAttachmentTo", False),
        ]

    def test_internal_only_rules(self) -> None:
        rules = [make_rule(forwardTo=["boss@contoso.com"]), {"displayName": "Move", "actions": {"moveToFolder": "x"}}]
        assert find_external_forwarding("alice@contoso.com", rules, ACCEPTED) == []

    def test_rule_without_actions(self) -> None:
        assert find_external_forwarding("alice@contoso.com", [{"displayName": "Empty"}], ACCEPTED) == []
