"""CLI entry point for visdiff."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from visdiff.errors import VisDiffError
from visdiff.models.comparison import Report
from visdiff.models.config import CONFIG_FILE_NAME, VisDiffConfig
from visdiff.orchestrator import NO_BASELINE, CompareRun, Orchestrator

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load(config: str) -> Orchestrator:
    try:
        cfg = VisDiffConfig.load(config)
    except VisDiffError as e:
        _fail(e)
    return Orchestrator(cfg, root_dir=Path(config).resolve().parent)


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]{error}[/red]")
    details = getattr(error, "details", None)
    if details:
        for detail in details:
            loc = ".".join(str(p) for p in detail.get("loc", ()))
            console.print(f"  [red]{loc}: {detail.get('msg')}[/red]")
    sys.exit(1)


def _print_compare(run: CompareRun) -> None:
    table = Table(title="Comparison Results")
    table.add_column("Identifier", style="bold")
    table.add_column("Status")
    table.add_column("Difference", justify="right")
    for result in run.results:
        if result.error:
            status = "[yellow]NEW[/yellow]" if result.error == NO_BASELINE else f"[red]ERROR[/red] {result.error}"
            diff = "-"
        elif result.passed:
            status, diff = "[green]PASS[/green]", f"{result.difference:.2%}"
        else:
            status, diff = "[red]FAIL[/red]", f"{result.difference:.2%}"
        table.add_row(result.identifier, status, diff)
    console.print(table)

    console.print(
        f"[green]{len(run.passed)} passed[/green], [red]{len(run.failed)} failed[/red], "
        f"[yellow]{len(run.missing)} new[/yellow] (threshold {run.threshold:.2%})"
    )
    if run.capture.failed:
        console.print(f"[red]{run.capture.failed} capture(s) failed[/red]")
    if run.updated:
        console.print(f"Updated {len(run.updated)} baseline(s)")
    if run.report_path:
        console.print(f"  Report: [blue]{run.report_path}[/blue]")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual regression testing for web pages."""
    setup_logging(verbose)


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.option("--config", "-c", default=CONFIG_FILE_NAME, help="Config file path")
def init(force: bool, config: str) -> None:
    """Create a default configuration and the .visdiff storage tree."""
    config_path = Path(config)
    if config_path.exists() and not force:
        console.print(f"[yellow]{config_path} already exists. Use --force to overwrite.[/yellow]")
        sys.exit(1)

    cfg = VisDiffConfig()
    root = config_path.resolve().parent
    try:
        cfg.save(config_path)
        resolved = cfg.save_resolved(root)
        Orchestrator(cfg, root_dir=root).storage.initialize()
    except (OSError, VisDiffError) as e:
        _fail(e)

    console.print(f"[green]Created {config_path}[/green]")
    console.print(f"Resolved configuration written to [blue]{resolved}[/blue]")
    console.print("\nEdit the paths and viewports, then run:")
    console.print("  [blue]visdiff capture[/blue]")


@cli.command()
@click.argument("urls", nargs=-1)
@click.option("--viewport", help="Capture only this named viewport")
@click.option("--full-page/--no-full-page", default=None, help="Capture the full scrollable page")
@click.option("--timeout", type=click.IntRange(min=1), help="Navigation timeout in ms")
@click.option("--config", "-c", default=CONFIG_FILE_NAME, help="Config file path")
def capture(urls: tuple[str, ...], viewport: str | None, full_page: bool | None,
            timeout: int | None, config: str) -> None:
    """Capture baseline screenshots."""
    orchestrator = _load(config)
    try:
        run = orchestrator.run_capture(list(urls) or None, viewport, full_page, timeout)
    except VisDiffError as e:
        _fail(e)

    for result in run.summary.results:
        if not result.success:
            console.print(f"  [red]✗[/red] {result.url} @ {result.viewport.name}: {result.error}")
    console.print(
        f"[green]Capture complete:[/green] {run.summary.successful} baseline(s) saved, "
        f"{run.summary.failed} failed"
    )
    sys.exit(run.exit_code)


@cli.command()
@click.argument("urls", nargs=-1)
@click.option("--threshold", type=click.FloatRange(0.0, 1.0), help="Override the pass threshold (0-1)")
@click.option("--update-on-pass", is_flag=True, help="Replace baselines of passing comparisons")
@click.option("--fail-on-missing/--no-fail-on-missing", default=True,
              help="Exit non-zero when a baseline is missing")
@click.option("--config", "-c", default=CONFIG_FILE_NAME, help="Config file path")
def compare(urls: tuple[str, ...], threshold: float | None, update_on_pass: bool,
            fail_on_missing: bool, config: str) -> None:
    """Compare current screenshots against baselines."""
    orchestrator = _load(config)
    try:
        run = orchestrator.run_compare(list(urls) or None, threshold, update_on_pass, fail_on_missing)
    except VisDiffError as e:
        _fail(e)

    _print_compare(run)
    if run.missing and fail_on_missing:
        console.print("Run [blue]visdiff approve --all[/blue] to accept new screenshots.")
    sys.exit(run.exit_code)


@cli.command()
@click.argument("identifiers", nargs=-1)
@click.option("--all", "approve_all", is_flag=True, help="Approve every current screenshot")
@click.option("--config", "-c", default=CONFIG_FILE_NAME, help="Config file path")
def approve(identifiers: tuple[str, ...], approve_all: bool, config: str) -> None:
    """Accept current screenshots as the new baselines."""
    if not identifiers and not approve_all:
        console.print("[yellow]Nothing to approve.[/yellow] Pass identifiers or use --all.")
        sys.exit(1)

    orchestrator = _load(config)
    try:
        approved = orchestrator.run_approve(None if approve_all else list(identifiers))
    except VisDiffError as e:
        _fail(e)

    if not approved:
        console.print("[yellow]No baselines were updated[/yellow]")
        return
    console.print(f"[green]Approved {len(approved)} baseline(s):[/green]")
    for identifier in approved:
        console.print(f"  {identifier}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the latest report as JSON")
@click.option("--verbose", "show_results", is_flag=True, help="List every result")
@click.option("--config", "-c", default=CONFIG_FILE_NAME, help="Config file path")
def status(as_json: bool, show_results: bool, config: str) -> None:
    """Show the most recent comparison report."""
    orchestrator = _load(config)
    try:
        report = orchestrator.get_status()
    except VisDiffError as e:
        _fail(e)

    if as_json:
        data = report.model_dump(mode="json") if report else None
        click.echo(json.dumps(data, indent=2))
        return

    if report is None:
        console.print("[yellow]No comparison runs yet. Run 'visdiff compare' first.[/yellow]")
        return

    _print_status(report, show_results)


def _print_status(report: Report, show_results: bool) -> None:
    table = Table(title="Latest Comparison")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Run", report.timestamp.isoformat(timespec="seconds"))
    table.add_row("Total", str(report.summary.total))
    table.add_row("Passed", f"[green]{report.summary.passed}[/green]")
    table.add_row("Failed", f"[red]{report.summary.failed}[/red]")
    table.add_row("New", f"[yellow]{report.summary.new}[/yellow]")
    console.print(table)

    if show_results:
        for result in report.results:
            if result.error:
                console.print(f"  [yellow]?[/yellow] {result.identifier}: {result.error}")
            elif result.passed:
                console.print(f"  [green]✓[/green] {result.identifier}")
            else:
                console.print(f"  [red]✗[/red] {result.identifier} ({result.difference:.2%})")


@cli.command()
@click.argument("url", required=False)
@click.option("--interval", type=click.IntRange(min=100), default=2000, show_default=True,
              help="Milliseconds between comparison runs")
@click.option("--config", "-c", default=CONFIG_FILE_NAME, help="Config file path")
def watch(url: str | None, interval: int, config: str) -> None:
    """Re-run the comparison on an interval until interrupted."""
    orchestrator = _load(config)

    def on_result(run: CompareRun) -> None:
        console.print(
            f"[{run.timestamp:%X}] [green]{len(run.passed)} passed[/green], "
            f"[red]{len(run.failed)} failed[/red], [yellow]{len(run.missing)} new[/yellow]"
        )

    console.print(f"Watching every {interval}ms. Press Ctrl+C to stop.")
    try:
        asyncio.run(orchestrator.watch([url] if url else None, interval, on_result=on_result))
    except KeyboardInterrupt:
        console.print("\nStopped watching")
    except VisDiffError as e:
        _fail(e)


if __name__ == "__main__":
    cli()
