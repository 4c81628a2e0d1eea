from __future__ import annotations

import json
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .bootstrap import Services, build_services
from .catalog import load_catalog, plan_execution_order
from .config import AppConfig, load_config
from .errors import BizboxError
from .logging_config import configure_logging
from .orchestrator import RunRequest, RunResult
from .schemas import RunStatus, Tier
from .sdk import load_retrieved_context


console = Console()

TIER_CHOICES = click.Choice([tier.value for tier in Tier], case_sensitive=False)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, message="bizbox %(version)s")
def main() -> None:
    """Generate, track and package Business in a Box runs."""


@main.command()
@click.argument("subject")
@click.option("--tier", type=TIER_CHOICES, required=True, help="Package tier to generate.")
@click.option("--owner", "owner_id", type=str, default="local", show_default=True)
@click.option("--run-id", type=str, default=None, help="Override generated run identifier.")
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), default=None)
@click.option("--dry-run", is_flag=True, default=False, help="Use stubbed generation instead of the API.")
@click.option("--package", "package_after", is_flag=True, default=False, help="Package deliverables after the run.")
@click.option("--verbose", is_flag=True, default=False, help="Increase logging verbosity.")
def run(
    subject: str,
    tier: str,
    owner_id: str,
    run_id: Optional[str],
    config_path: Optional[Path],
    dry_run: bool,
    package_after: bool,
    verbose: bool,
) -> None:
    """Execute every work item of TIER for the business described by SUBJECT."""

    logger = configure_logging(verbose=verbose, logger_name="bizbox.cli", rich_output=True)
    services = _services(config_path, dry_run)
    request = RunRequest(
        tier=Tier.parse(tier),
        subject_text=subject,
        run_id=run_id or _generate_run_id(),
        owner_id=owner_id,
    )
    request.retrieved_context = load_retrieved_context(services.retrieval, owner_id, subject)
    logger.info("Run ID: %s", request.run_id)

    services.engine.prepare(request, config=services.config.to_dict())
    try:
        result = services.engine.run(request, services.new_context())
    except BizboxError as exc:
        console.print(f"[red]Run {request.run_id} failed:[/red] {exc}")
        sys.exit(1)

    _print_result(result)
    if package_after:
        _package(services, request.run_id)
    if result.status != RunStatus.COMPLETED:
        sys.exit(1)


@main.command()
@click.argument("run_id")
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), default=None)
@click.option("--tier", type=TIER_CHOICES, default=None, help="Package as a different tier.")
def package(run_id: str, config_path: Optional[Path], tier: Optional[str]) -> None:
    """Build and store the delivery package for RUN_ID."""

    configure_logging(logger_name="bizbox.cli", rich_output=True)
    services = _services(config_path, dry_run=False)
    _package(services, run_id, Tier.parse(tier) if tier else None)


@main.command()
@click.argument("run_id")
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), default=None)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the raw summary as JSON.")
def summary(run_id: str, config_path: Optional[Path], as_json: bool) -> None:
    """Show per-section counts and per-item results for RUN_ID."""

    services = _services(config_path, dry_run=False)
    try:
        data = services.engine.execution_summary(run_id)
    except KeyError:
        console.print(f"[red]Unknown run {run_id}[/red]")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(title=f"Run {run_id} ({data['tier']})", show_lines=False)
    table.add_column("Item")
    table.add_column("Section")
    table.add_column("Status")
    table.add_column("Tokens", justify="right")
    for item in data["items"]:
        table.add_row(item["name"], item["section"], item["status"], str(item["tokens_used"]))
    console.print(table)
    console.print(
        f"Status: {data['status']}  Completed: {data['completed_count']}/{data['total_count']}  "
        f"Failed: {data['failed_count']}  Tokens: {data['total_tokens']}"
    )


@main.command()
@click.option("--tier", type=TIER_CHOICES, required=True)
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), default=None)
def catalog(tier: str, config_path: Optional[Path]) -> None:
    """List the work items TIER runs, in execution order."""

    config = load_config(config_path)
    plan = plan_execution_order(load_catalog(config.catalog_path).items_for_tier(Tier.parse(tier)))
    table = Table(title=f"{Tier.parse(tier).label}: {plan.total} work items")
    table.add_column("#", justify="right")
    table.add_column("Item")
    table.add_column("Section")
    table.add_column("Depends on")
    for number, item in enumerate(plan.items, start=1):
        table.add_row(str(number), item.id, item.section, ", ".join(item.depends_on) or "-")
    console.print(table)


def _services(config_path: Optional[Path], dry_run: bool) -> Services:
    config: AppConfig = load_config(config_path, dry_run=dry_run)
    return build_services(config)


def _package(services: Services, run_id: str, tier: Optional[Tier] = None) -> None:
    try:
        delivered = services.packager.package(run_id, tier=tier)
    except BizboxError as exc:
        console.print(f"[red]Packaging failed:[/red] {exc}")
        sys.exit(1)
    console.print(f"Package {delivered.package_id} ({delivered.format.value}, {delivered.size_bytes} bytes)")
    console.print(f"Download: {delivered.download_url}")
    console.print(f"Expires: {delivered.expires_at.isoformat()}")


def _generate_run_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"run-{timestamp}-{uuid.uuid4().hex[:6]}"


def _print_result(result: RunResult) -> None:
    table = Table(title="Run Summary", show_lines=False)
    table.add_column("Item")
    table.add_column("Status")
    table.add_column("Tokens", justify="right")
    for execution in result.executions:
        style = "green" if execution.succeeded else "red"
        table.add_row(execution.display_name, f"[{style}]{execution.status}[/{style}]", str(execution.tokens_used))
    console.print(table)
    console.print(f"Run ID: {result.run_id}")
    console.print(
        f"Status: {result.status.value}  Completed: {result.completed_count}/{result.total_count}  "
        f"Failed: {result.failed_count}"
    )
    if result.deployment.has_url:
        console.print(f"Deployment: {result.deployment.live_url or result.deployment.preview_url}")
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
