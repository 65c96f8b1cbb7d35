from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from ipolens.aggregation import Aggregator, trend_from_history
from ipolens.analysis import IpoAnalyzer, build_provider
from ipolens.core.config import get_config
from ipolens.core.errors import ConfigError, IpoLensError
from ipolens.models import DataKind, MergedIpoRecord, SyncResult
from ipolens.orchestration import MarketMonitor, build_sync_orchestrator
from ipolens.scrapers import InvestorGainScraper, build_registry, create_scraper
from ipolens.scoring import ScoringEngine
from ipolens.storage import SqlIpoRepository
from ipolens.utils.logger import configure_logging, get_logger

T = TypeVar("T")

# Main CLI app
app = typer.Typer(
    name="ipolens",
    help="IPO Lens CLI: multi-source Indian IPO aggregation, scoring and sync",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)

# Command groups
orchestrate_app = typer.Typer(
    name="orchestrate",
    help="Workflow orchestration and scheduling",
    no_args_is_help=True,
)
admin_app = typer.Typer(
    name="admin",
    help="Administration and configuration",
    no_args_is_help=True,
)
api_app = typer.Typer(
    name="api",
    help="REST API server commands",
    no_args_is_help=True,
)

# Register command groups
app.add_typer(orchestrate_app, name="orchestrate")
app.add_typer(admin_app, name="admin")
app.add_typer(api_app, name="api")

# Rich console for better output
console = Console()
logger = get_logger(__name__)


def _run(coro: Awaitable[T]) -> T:
    return asyncio.run(coro)


def _fmt(value: Any, suffix: str = "") -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:g}{suffix}"
    return f"{value}{suffix}"


def _records_table(records: list[MergedIpoRecord], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Symbol", style="bold")
    table.add_column("Company")
    table.add_column("Status")
    table.add_column("Price")
    table.add_column("GMP", justify="right")
    table.add_column("Subs", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Confidence")
    table.add_column("Sources")
    for record in records:
        price = (
            f"{record.price_min:g}-{record.price_max:g}"
            if record.price_min is not None and record.price_max is not None
            else _fmt(record.price_max)
        )
        confidence = record.confidence.value + (" [yellow]review[/yellow]" if record.needs_review else "")
        table.add_row(
            record.symbol,
            record.company_name,
            record.status.value if record.status else "-",
            price,
            _fmt(record.gmp),
            _fmt(record.subscription_total, "x"),
            _fmt(record.overall_score),
            confidence,
            ", ".join(sorted(record.sources)),
        )
    return table


def _print_sync_result(result: SyncResult) -> None:
    colour = "green" if result.success else "red"
    console.print(f"[{colour}]Sync {result.status.value}[/{colour}] ({result.duration_ms:.0f} ms)")
    if result.error:
        console.print(f"[red]{result.error}[/red]")
    console.print(
        f"created={result.created} updated={result.updated} unchanged={result.unchanged} "
        f"marked_as_listed={result.marked_as_listed} total={result.total}"
    )
    for outcome in result.source_results:
        mark = "[green]✓[/green]" if outcome.success else "[red]✗[/red]"
        detail = f"{outcome.count} records" if outcome.success else outcome.error
        console.print(f"  {mark} {outcome.source}/{outcome.kind.value}: {detail}")


@app.command("scrape")
def scrape(
    source: str = typer.Argument(..., help="Source id (chittorgarh, investorgain, groww, nse, nsetools)"),
    kind: DataKind = typer.Option(DataKind.IPOS, "--kind", "-k", help="Operation to run"),
    as_json: bool = typer.Option(False, "--json", help="Print raw records as JSON"),
):
    """Run one operation against a single source.

    [bold]Example:[/bold]
        ipolens scrape chittorgarh --kind gmp
    """
    try:
        scraper = create_scraper(source, get_config())
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None

    async def _scrape():
        operations = {
            DataKind.IPOS: scraper.get_ipos,
            DataKind.SUBSCRIPTIONS: scraper.get_subscriptions,
            DataKind.GMP: scraper.get_gmp,
        }
        try:
            return await operations[kind]()
        finally:
            await scraper.aclose()

    result = _run(_scrape())
    if not result.supported:
        console.print(f"[yellow]{source} does not provide {kind.value}[/yellow]")
        return
    if not result.success:
        console.print(f"[red]✗ {source}/{kind.value} failed: {result.error}[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in result.data], indent=2))
        return
    table = Table(title=f"{source} {kind.value} ({result.response_time_ms:.0f} ms)")
    table.add_column("Symbol", style="bold")
    table.add_column("Company")
    table.add_column("Fields")
    for record in result.data:
        fields = {k: v for k, v in record.field_values().items() if k != "company_name"}
        table.add_row(record.symbol or "-", record.company_name, ", ".join(f"{k}={v}" for k, v in fields.items()))
    console.print(table)
    console.print(f"[green]✓[/green] {len(result.data)} records")


@app.command("aggregate")
def aggregate(
    score: bool = typer.Option(True, "--score/--no-score", help="Attach derived scores"),
    as_json: bool = typer.Option(False, "--json", help="Print merged records as JSON"),
):
    """Aggregate every enabled source and print the merged set.

    [bold]Example:[/bold]
        ipolens aggregate --no-score
    """
    config = get_config()
    aggregator = Aggregator(build_registry(config), config.aggregator, config.circuit_breaker)

    async def _aggregate():
        try:
            return await aggregator.aggregate()
        finally:
            await aggregator.aclose()

    result = _run(_aggregate())
    records = ScoringEngine().score_all(result.records) if score else result.records

    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
    else:
        console.print(_records_table(records, f"Merged IPOs ({result.successful_sources}/{result.total_sources} sources)"))

    if result.total_outage:
        console.print("[red]✗ Every source failed[/red]")
        raise typer.Exit(1)


@app.command("sync")
def sync(
    clean: bool = typer.Option(False, "--clean", help="Mark IPOs no source reports any more as listed"),
):
    """Aggregate, score and reconcile with storage.

    [bold]Example:[/bold]
        ipolens sync --clean
    """
    orchestrator = build_sync_orchestrator()

    async def _sync():
        try:
            return await orchestrator.sync(clean=clean)
        finally:
            await orchestrator.aggregator.aclose()

    result = _run(_sync())
    _print_sync_result(result)
    if not result.success:
        raise typer.Exit(1)


@app.command("monitor")
def monitor(
    watch: bool = typer.Option(False, "--watch", "-w", help="Keep polling at the market-hours interval"),
    max_polls: int | None = typer.Option(None, "--max-polls", help="Stop after this many polls"),
):
    """Poll live subscription and GMP figures and print alerts.

    [bold]Examples:[/bold]
        ipolens monitor
        ipolens monitor --watch
    """
    orchestrator = build_sync_orchestrator()
    market = MarketMonitor(orchestrator.aggregator, orchestrator.repository)

    def _show(alerts) -> None:
        colours = {"critical": "red", "warning": "yellow", "info": "cyan"}
        for alert in alerts:
            colour = colours[alert.severity.value]
            console.print(f"[{colour}]{alert.severity.value.upper()}[/{colour}] {alert.symbol}: {alert.message}")

    async def _monitor():
        try:
            if watch:
                await market.run(max_polls=max_polls, on_alerts=_show)
            else:
                alerts = await market.poll()
                _show(alerts)
                if not alerts:
                    console.print("[green]No alerts[/green]")
        finally:
            await orchestrator.aggregator.aclose()

    try:
        _run(_monitor())
    except KeyboardInterrupt:
        console.print("[yellow]Monitor stopped[/yellow]")


@app.command("analyze")
def analyze(
    symbol: str = typer.Argument(..., help="Symbol of a stored IPO"),
):
    """Narrative analysis of one stored IPO.

    [bold]Example:[/bold]
        ipolens analyze ABCLTD
    """
    record = SqlIpoRepository().find_by_symbol(symbol)
    if record is None:
        console.print(f"[red]No stored IPO with symbol {symbol.upper()}; run `ipolens sync` first[/red]")
        raise typer.Exit(1)

    analyzer = IpoAnalyzer(build_provider())

    async def _analyze():
        try:
            return await analyzer.analyze(record)
        finally:
            await analyzer.aclose()

    result = _run(_analyze())
    console.print(f"[bold]{record.company_name}[/bold] ({record.symbol})")
    if result.fallback:
        console.print("[yellow]Fallback analysis[/yellow]")
    console.print(f"\n[bold]Summary:[/bold] {result.summary}")
    console.print(f"[bold]Risk:[/bold] {result.risk_assessment}")
    for insight in result.key_insights:
        console.print(f"  • {insight}")
    console.print(f"\n[bold]Recommendation:[/bold] {result.recommendation}")


@app.command("gmp-history")
def gmp_history(
    ipo_id: str = typer.Argument(..., help="InvestorGain IPO id"),
):
    """Day-by-day GMP history for one IPO from InvestorGain.

    [bold]Example:[/bold]
        ipolens gmp-history 1234
    """
    config = get_config()
    scraper = InvestorGainScraper(config.sources, config.scraper)

    async def _history():
        try:
            return await scraper.get_gmp_history(ipo_id)
        finally:
            await scraper.aclose()

    try:
        points = _run(_history())
    except IpoLensError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1) from None

    table = Table(title=f"GMP history for IPO {ipo_id}")
    table.add_column("Date")
    table.add_column("GMP", justify="right")
    table.add_column("GMP %", justify="right")
    table.add_column("Est. listing", justify="right")
    for point in points:
        table.add_row(
            point.as_of.isoformat(),
            _fmt(point.gmp),
            _fmt(point.gmp_percent, "%"),
            _fmt(point.estimated_listing),
        )
    console.print(table)
    trend = trend_from_history(points)
    console.print(f"Trend: [bold]{trend.value if trend else 'n/a'}[/bold]")


@admin_app.command("config")
def show_config():
    """Print current configuration values.

    [bold]Example:[/bold]
        ipolens admin config
    """
    config = get_config()
    typer.echo(f"Environment: {config.environment.value}")
    typer.echo(f"Enabled sources: {', '.join(config.sources.enabled)}")
    typer.echo(f"Source priority: {', '.join(config.sources.priority)}")
    typer.echo(f"Database: {config.storage.resolved_database_url}")
    typer.echo(f"Snapshots: {config.storage.snapshot_dir if config.storage.snapshot_enabled else 'disabled'}")
    typer.echo(f"AI provider: {config.ai.provider.value} (key {'set' if config.ai.api_key else 'missing'})")
    typer.echo(f"Source timeout: {config.aggregator.source_timeout_seconds}s")


@admin_app.command("sources")
def check_sources():
    """Test connectivity to every enabled source.

    [bold]Example:[/bold]
        ipolens admin sources
    """
    config = get_config()
    aggregator = Aggregator(build_registry(config), config.aggregator, config.circuit_breaker)

    async def _check():
        try:
            return await aggregator.test_connections()
        finally:
            await aggregator.aclose()

    outcomes = _run(_check())
    for outcome in outcomes:
        if outcome.success:
            console.print(
                f"[green]✓[/green] {outcome.source}: {outcome.count} IPOs in {outcome.response_time_ms:.0f} ms"
            )
        else:
            console.print(f"[red]✗[/red] {outcome.source}: {outcome.error}")
    if outcomes and not any(outcome.success for outcome in outcomes):
        raise typer.Exit(1)


@orchestrate_app.command("serve")
def orchestrate_serve(
    sync_interval: int | None = typer.Option(None, help="Seconds between clean syncs"),
    monitor_interval: int | None = typer.Option(None, help="Seconds between market polls"),
):
    """Serve the scheduled sync and market-monitor flows with Prefect.

    [bold]Example:[/bold]
        ipolens orchestrate serve --sync-interval 3600
    """
    from ipolens.orchestration.flows import serve_flows

    console.print("[green]Serving ipo-sync and market-monitor flows[/green]")
    serve_flows(sync_interval=sync_interval, monitor_interval=monitor_interval)


@api_app.command("serve")
def api_serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind the API server"),
    port: int = typer.Option(8000, help="Port to bind the API server"),
    reload: bool = typer.Option(False, help="Enable auto-reload for development"),
):
    """Start the REST API server.

    The admin sync endpoint relies on one orchestrator per process, so the
    server always runs a single worker.

    [bold]Examples:[/bold]
        ipolens api serve
        ipolens api serve --port 8080 --reload
    """
    import uvicorn

    console.print(f"[green]Starting IPO Lens API server on {host}:{port}[/green]")
    uvicorn.run(
        "ipolens.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Command line arguments (optional)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    settings = get_config().logging
    configure_logging(settings.level, settings.format)

    try:
        app(args=argv)
        return 0
    except typer.Exit as e:
        return e.exit_code
    except KeyboardInterrupt:
        typer.secho("\nOperation cancelled by user", fg=typer.colors.YELLOW)
        return 130
    except Exception as e:
        typer.secho(f"Unexpected error: {e}", fg=typer.colors.RED)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
