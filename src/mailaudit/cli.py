"""Command-line interface for the mail access audit toolkit.

Each command is one entry of the operator menu.

Usage:
    python -m mailaudit validate-config
    python -m mailaudit mail-access --hours 48
    python -m mailaudit mail-access --input exports/ual.csv -o -
    python -m mailaudit classify-ip 185.220.1.1 8.8.8.8
    python -m mailaudit forwarding-check --user alice@contoso.com
"""

from __future__ import annotations

import sys
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mailaudit.config import validate_config_file
from mailaudit.core.logging import configure_logging, set_correlation_id

if TYPE_CHECKING:
    from mailaudit.config_schema import AppConfig
    from mailaudit.engine.aggregator import AccessReport
    from mailaudit.graph.client import GraphClient

console = Console()
err_console = Console(stderr=True)

RISK_STYLES = {"High": "bold red", "Medium": "yellow", "Low": "green"}
DATETIME_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%SZ", "%Y-%m-%d %H:%M:%S"]


def _load_config() -> AppConfig:
    """Load config, printing an actionable error and exiting on failure."""
    from mailaudit.config import get_config
    from mailaudit.core.errors import ConfigLoadError, ConfigValidationError

    try:
        return get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        err_console.print(
            f"[red]Config error:[/red] {escape(str(e))}\n\n"
            "Create config/config.yaml (or set MAILAUDIT_CONFIG_PATH) and run "
            "[cyan]mailaudit validate-config[/cyan]."
        )
        sys.exit(1)


def _init_graph(config: AppConfig) -> GraphClient:
    """Build an authenticated Graph client from config, exiting on auth setup errors."""
    from mailaudit.auth.msal_auth import GraphAuth
    from mailaudit.core.errors import AuthenticationError
    from mailaudit.graph.client import GraphClient

    try:
        auth = GraphAuth.from_config(config.auth)
    except AuthenticationError as e:
        err_console.print(
            f"[red]Authentication error:[/red] {escape(str(e))}\n\n"
            "Check your Azure AD app registration and try again."
        )
        sys.exit(1)

    return GraphClient(auth, base_url=config.auth.graph_base_url)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Microsoft 365 mail access audit and triage."""
    log_level = "DEBUG" if debug else "WARNING"
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file."""
    console.print(f"Validating config: [cyan]{escape(str(config_path or 'config/config.yaml'))}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {escape(message)}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {escape(message)}")
        sys.exit(1)


@cli.command("mail-access")
@click.option(
    "--input",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read events from an exported audit file instead of querying Graph",
)
@click.option(
    "--output",
    "-o",
    "output_path",
    type=click.Path(dir_okay=False, allow_dash=True, path_type=Path),
    default=None,
    help="CSV destination ('-' for stdout; default: report.output_dir)",
)
@click.option("--hours", type=int, default=None, help="Look back this many hours (Graph only)")
@click.option("--start", type=click.DateTime(DATETIME_FORMATS), default=None, help="Window start, UTC (Graph only)")
@click.option("--end", type=click.DateTime(DATETIME_FORMATS), default=None, help="Window end, UTC (Graph only)")
@click.option("--limit", type=click.IntRange(min=1), default=None, help="Maximum events to process")
@click.option(
    "--policy",
    type=click.Choice(["first_wins", "max_risk"]),
    default=None,
    help="Row risk level: first event in the group, or highest seen",
)
@click.option(
    "--order",
    type=click.Choice(["first_seen", "sorted"]),
    default=None,
    help="Row ordering",
)
def mail_access(
    input_path: Path | None,
    output_path: Path | None,
    hours: int | None,
    start: datetime | None,
    end: datetime | None,
    limit: int | None,
    policy: str | None,
    order: str | None,
) -> None:
    """Build the deduplicated, risk-scored MailItemsAccessed report."""
    try:
        _run_mail_access(input_path, output_path, hours, start, end, limit, policy, order)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        err_console.print(f"\n[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)


def _run_mail_access(
    input_path: Path | None,
    output_path: Path | None,
    hours: int | None,
    start: datetime | None,
    end: datetime | None,
    limit: int | None,
    policy: str | None,
    order: str | None,
) -> None:
    from mailaudit.engine.aggregator import AccessAggregator, AccessReport, build_access_report
    from mailaudit.engine.classifier import RiskClassifier
    from mailaudit.engine.normalizer import normalize_events
    from mailaudit.engine.sources import load_events
    from mailaudit.graph.audit import AuditLogSource, format_graph_datetime, resolve_window
    from mailaudit.reporting.csv_export import export_access_report, write_access_report

    config = _load_config()
    set_correlation_id(str(uuid.uuid4()))

    classifier = RiskClassifier.from_config(config.risk)
    policy = policy or config.risk.policy
    order = order or config.report.order
    limit = limit or config.audit.result_size

    to_stdout = output_path is not None and str(output_path) == "-"
    out = err_console if to_stdout else console

    if input_path is not None:
        out.print(f"Loading audit events from [cyan]{escape(str(input_path))}[/cyan]...")
        events = load_events(input_path, limit=limit)
        report = build_access_report(events, classifier, policy=policy, order=order)
    else:
        window_start, window_end = resolve_window(config.audit, start=start, end=end, hours=hours)
        out.print(
            f"Querying {config.audit.operation} from "
            f"[cyan]{format_graph_datetime(window_start)}[/cyan] to "
            f"[cyan]{format_graph_datetime(window_end)}[/cyan] (max {limit} records)..."
        )
        source = AuditLogSource.from_config(_init_graph(config), config.audit)

        # Pages are fed into one accumulator as they arrive
        aggregator = AccessAggregator(policy=policy, order=order)
        total = skipped = 0
        for page in source.iter_mail_access_pages(window_start, window_end, limit=limit):
            normalized = normalize_events(page, classifier)
            aggregator.feed(normalized.records)
            total += len(page)
            skipped += normalized.skipped

        report = AccessReport(
            rows=aggregator.rows(),
            total_events=total,
            skipped_events=skipped,
            policy=policy,
            order=order,
        )

    if to_stdout:
        write_access_report(report.rows, sys.stdout)
        destination = "stdout"
    else:
        if output_path is None:
            stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
            output_path = Path(config.report.output_dir) / f"mail_access_{stamp}.csv"
        destination = str(export_access_report(report, output_path))

    _print_report(out, report, config.report.show_rows, destination)


def _print_report(out: Console, report: AccessReport, show_rows: int, destination: str) -> None:
    if not report.rows:
        out.print("\n[yellow]No mail access events found in this window.[/yellow]")
    elif show_rows > 0:
        table = Table(title="Mail Access", box=None, padding=(0, 2))
        table.add_column("Mailbox Owner", style="cyan")
        table.add_column("Accessed By")
        table.add_column("First Access")
        table.add_column("Client App")
        table.add_column("IP")
        table.add_column("Count", justify="right")
        table.add_column("Risk")
        for row in report.rows[:show_rows]:
            level = row.risk_level.value
            table.add_row(
                escape(row.mailbox_owner),
                escape(row.accessed_by),
                escape(row.access_time),
                escape(row.client_app),
                escape(row.access_location),
                str(row.access_count),
                f"[{RISK_STYLES[level]}]{level}[/{RISK_STYLES[level]}]",
            )
        out.print()
        out.print(table)
        if len(report.rows) > show_rows:
            out.print(f"[dim]... {len(report.rows) - show_rows} more rows in the CSV[/dim]")

    summary = report.risk_summary()
    out.print("\n[bold]Mail Access Summary[/bold]")
    out.print(f"  Events:   {report.total_events}")
    out.print(f"  Skipped:  {report.skipped_events}")
    out.print(f"  Rows:     {len(report.rows)}")
    out.print(
        f"  Risk:     High={summary['High']} Medium={summary['Medium']} Low={summary['Low']}"
    )
    out.print(f"  Policy:   {report.policy}")
    out.print(f"  Written:  {escape(destination)}")


@cli.command("classify-ip")
@click.argument("ips", nargs=-1, required=True)
def classify_ip(ips: tuple[str, ...]) -> None:
    """Show the risk level the configured patterns give each IP."""
    from mailaudit.core.errors import ConfigurationError
    from mailaudit.engine.classifier import RiskClassifier

    config = _load_config()
    try:
        classifier = RiskClassifier.from_config(config.risk)
    except ConfigurationError as e:
        err_console.print(f"[red]Risk pattern error:[/red] {escape(str(e))}")
        sys.exit(1)

    for ip in ips:
        level = classifier.classify(ip).value
        style = RISK_STYLES[level]
        console.print(f"{escape(ip) if ip else '(empty)'}  [{style}]{level}[/{style}]")


@cli.command("forwarding-check")
@click.option(
    "--user",
    "users",
    multiple=True,
    required=True,
    help="Mailbox UPN to inspect (repeatable)",
)
def forwarding_check(users: tuple[str, ...]) -> None:
    """List inbox rules that forward mail outside the accepted domains."""
    try:
        _run_forwarding_check(users)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        err_console.print(f"\n[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)


def _run_forwarding_check(users: tuple[str, ...]) -> None:
    from mailaudit.engine.forwarding import ForwardingFinding, find_external_forwarding
    from mailaudit.graph.mailbox import MailboxManager

    config = _load_config()
    set_correlation_id(str(uuid.uuid4()))
    manager = MailboxManager(_init_graph(config))

    accepted_domains = config.tenant.accepted_domains or manager.list_accepted_domains()
    if not accepted_domains:
        err_console.print(
            "[red]No accepted domains known.[/red] Set tenant.accepted_domains in config.yaml."
        )
        sys.exit(1)

    findings: list[ForwardingFinding] = []
    for user in users:
        findings.extend(find_external_forwarding(user, manager.list_inbox_rules(user), accepted_domains))

    if not findings:
        console.print(f"[green]No external forwarding rules found[/green] ({len(users)} mailboxes)")
        return

    table = Table(title="External Forwarding", box=None, padding=(0, 2))
    table.add_column("Mailbox", style="cyan")
    table.add_column("Rule")
    table.add_column("Action")
    table.add_column("Recipient", style="bold red")
    table.add_column("Enabled")
    for finding in findings:
        table.add_row(
            escape(finding.mailbox),
            escape(finding.rule_name),
            finding.action,
            escape(finding.recipient),
            "yes" if finding.enabled else "no",
        )
    console.print(table)
    console.print(f"\n[yellow]{len(findings)} external forwarding recipient(s) found[/yellow]")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
