from __future__ import annotations

import asyncio
import importlib
import json
from typing import Any, Optional, Union

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from routesync.annotations.registry import default_registry
from routesync.config import Settings, SyncConfig, settings
from routesync.errors import DuplicateEndpointError, SyncError
from routesync.extractors.routes import extract_endpoints
from routesync.logger import configure_logging
from routesync.orchestrator.pipeline import SyncResult, sync as run_sync
from routesync.reconcile.planner import ReconciliationPlan, operation_name
from routesync.routing.builder import Router
from routesync.routing.tree import RouterNode

app = typer.Typer(no_args_is_help=True, add_completion=False)

console = Console()


def resolve_tree(import_string: str) -> Union[Router, RouterNode]:
    """
    ``"myapp.routes:router"`` -> the Router (or RouterNode) it names. The
    attribute defaults to ``router``; a factory is called once.
    """
    module_path, _, attr_name = import_string.partition(":")
    module = importlib.import_module(module_path)
    obj: Any = getattr(module, attr_name or "router")

    if callable(obj) and not isinstance(obj, (Router, RouterNode)):
        obj = obj()
    if not isinstance(obj, (Router, RouterNode)):
        raise typer.BadParameter(
            f"{import_string!r} resolved to {type(obj).__name__}, not a Router or RouterNode"
        )
    return obj


def _settings(
    api_id: Optional[str],
    base_path: Optional[str],
    strict: Optional[bool],
    new_revision: Optional[bool],
    make_current: Optional[bool],
) -> Settings:
    overrides: dict[str, Any] = {}
    if api_id is not None:
        overrides["API_ID"] = api_id
    if base_path is not None:
        overrides["BASE_PATH"] = base_path
    if strict is not None:
        overrides["BREAK_ON_SAME_PATH"] = strict
    if new_revision is not None:
        overrides["GENERATE_NEW_REVISION"] = new_revision
    if make_current is not None:
        overrides["MAKE_NEW_REVISION_AS_CURRENT"] = make_current
    return settings.model_copy(update=overrides)


def _print_plan(plan: ReconciliationPlan) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("ACTION", no_wrap=True)
    table.add_column("METHOD", no_wrap=True)
    table.add_column("URL TEMPLATE")
    table.add_column("OPERATION")

    for ep in plan.to_create:
        table.add_row("[green]create[/green]", ep.method, ep.url_template, ep.operation_id)
    for pair in plan.to_edit:
        table.add_row("[yellow]edit[/yellow]", pair.new.method, pair.new.url_template, operation_name(pair.old))
    for name in plan.to_delete:
        table.add_row("[red]delete[/red]", "", "", name)

    console.print(table)


def _run(tree: str, s: Settings, dry_run: bool) -> SyncResult:
    try:
        return asyncio.run(
            run_sync(resolve_tree(tree), settings=s, config=SyncConfig.from_settings(s), dry_run=dry_run)
        )
    except DuplicateEndpointError as e:
        console.print(f"[bold red]Extraction failed:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=2)
    except SyncError as e:
        console.print(f"[bold red]Sync failed at stage '{e.stage}':[/bold red] {escape(str(e))}")
        raise typer.Exit(code=2)


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, help="Log level (default from ROUTESYNC_LOG_LEVEL)"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json", help="Serialize logs as JSON"),
) -> None:
    configure_logging(level=log_level, json=log_json)


@app.command()
def routes(
    tree: str = typer.Argument(..., help="Route tree as module:attribute"),
    base_path: str = typer.Option("", help="Prefix for every path"),
    strict: bool = typer.Option(False, help="Fail on duplicate path + method"),
    format: str = typer.Option("table", help="Output format: table|json"),
) -> None:
    """List the endpoints extracted from a route tree."""
    try:
        endpoints = extract_endpoints(
            resolve_tree(tree), base_path=base_path, registry=default_registry, break_on_same_path=strict
        )
    except DuplicateEndpointError as e:
        console.print(f"[bold red]Extraction failed:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=2)

    if format.lower() == "json":
        console.print(json.dumps([ep.model_dump(mode="json") for ep in endpoints], indent=2))
        return

    console.print(f"[bold]Endpoints:[/bold] {len(endpoints)}")
    table = Table(show_header=True, header_style="bold")
    table.add_column("METHOD", no_wrap=True)
    table.add_column("URL TEMPLATE")
    table.add_column("OPERATION ID", no_wrap=True)
    table.add_column("DISPLAY NAME")
    table.add_column("TAGS")
    table.add_column("POLICIES", no_wrap=True)

    for ep in endpoints:
        table.add_row(
            ep.method,
            ep.url_template,
            ep.operation_id,
            ep.display_name,
            ", ".join(ep.tags),
            ", ".join(f"{loc}:{len(xs)}" for loc, xs in ep.policies.items()),
        )

    console.print(table)


@app.command()
def plan(
    tree: str = typer.Argument(..., help="Route tree as module:attribute"),
    api_id: Optional[str] = typer.Option(None, help="API name, display name or path"),
    base_path: Optional[str] = typer.Option(None, help="Prefix for every path"),
    strict: Optional[bool] = typer.Option(None, "--strict/--no-strict", help="Fail on duplicate path + method"),
) -> None:
    """Show what a sync would change, without writing anything."""
    s = _settings(api_id, base_path, strict, None, None)
    result = _run(tree, s, dry_run=True)

    console.print(f"[bold]API:[/bold] {result.api_name}")
    _print_plan(result.plan)


@app.command("sync")
def sync_command(
    tree: str = typer.Argument(..., help="Route tree as module:attribute"),
    api_id: Optional[str] = typer.Option(None, help="API name, display name or path"),
    base_path: Optional[str] = typer.Option(None, help="Prefix for every path"),
    strict: Optional[bool] = typer.Option(None, "--strict/--no-strict", help="Fail on duplicate path + method"),
    new_revision: Optional[bool] = typer.Option(
        None, "--new-revision/--no-new-revision", help="Write into a new revision"
    ),
    make_current: Optional[bool] = typer.Option(
        None, "--make-current/--no-make-current", help="Release the revision as current"
    ),
) -> None:
    """Mirror the route tree into the API Management service."""
    s = _settings(api_id, base_path, strict, new_revision, make_current)
    result = _run(tree, s, dry_run=False)

    console.print(f"[bold green]routesync[/bold green] sync: {result.api_name}")
    console.print(f"Created: {result.created}  Edited: {result.edited}  Deleted: {result.deleted}")
    if result.promoted:
        console.print("Revision released as current")

    if not result.ok:
        console.print(f"[bold red]{len(result.failures)} items failed[/bold red]")
        for f in result.failures:
            console.print(f"  {escape(str(f.label or f.index))}: {escape(str(f.error))}")
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
