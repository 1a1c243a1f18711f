"""
design-scout command line
Entry point for running via: python -m designscout
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from designscout import __version__
from designscout.core.browser import BrowserEngine
from designscout.core.config import ScoutConfig, load_config
from designscout.core.exceptions import ScoutError
from designscout.core.mcp.client import MCPClient
from designscout.core.models import (
    CapturedURL,
    ComprehensiveStrategy,
    ContentTypeNeeds,
    PlatformPriority,
    SearchPhase,
)
from designscout.core.progressive_search import ProgressiveSearchEngine, summary_text
from designscout.core.route_executor import RouteExecutor

console = Console(width=120)
logger = logging.getLogger("designscout")


def setup_logging(log_level: str = "INFO"):
    """Configure logging with rich output"""
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


@asynccontextmanager
async def browser_session(config: ScoutConfig):
    """Connected engine for the length of one command"""
    client = MCPClient(config)
    await client.connect()
    engine = BrowserEngine(client, config)
    try:
        yield engine
    finally:
        await engine.close()
        await client.disconnect()


def _results_table(title: str, urls):
    table = Table(title=title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Type", style="magenta")
    table.add_column("Title", style="cyan")
    table.add_column("Keyword", style="green")
    table.add_column("Score", justify="right")
    table.add_column("URL")
    for i, url in enumerate(urls, 1):
        table.add_row(str(i), url.type.value, url.title, url.keyword, f"{url.relevance_score:.2f}", url.url)
    return table


def _configure(debug: bool, headless: bool) -> ScoutConfig:
    config = load_config()
    if debug:
        config.debug = True
        config.log_level = "DEBUG"
    if not headless:
        config.headless = False
    setup_logging(config.log_level)
    return config


def _run(coro):
    try:
        return asyncio.run(coro)
    except ScoutError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[bold cyan]👋 Interrupted[/bold cyan]")
        sys.exit(130)


@click.group()
@click.version_option(version=__version__)
def cli():
    """🔎 design-scout - find design references on Mobbin"""
    pass


@cli.command()
@click.option("--route", "-r", type=click.Choice(["apps", "flows", "screens"]), default="apps", help="Content category")
@click.option("--keyword", "-k", required=True, help="Keyword to search for")
@click.option("--platform", "-p", type=click.Choice(["ios", "web", "android"]), default="ios")
@click.option("--max-results", "-n", type=int, default=None, help="Results to capture")
@click.option("--debug", is_flag=True, help="Visible browser, screenshots and debug logs")
@click.option("--headless/--no-headless", default=True, help="Run the browser headless")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def route(route, keyword, platform, max_results, debug, headless, as_json):
    """Run a single route search"""
    config = _configure(debug, headless)

    async def go():
        async with browser_session(config) as engine:
            return await RouteExecutor(engine).execute_route(route, keyword, platform, max_results, debug)

    result = _run(go())
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    console.print(_results_table(f"{route} for '{keyword}' ({platform})", result.captured_urls))
    console.print(f"[dim]Strategy: {result.strategy}[/dim]")
    for warning in result.warnings:
        console.print(f"[yellow]⚠️  {warning}[/yellow]")
    for error in result.errors:
        console.print(f"[bold red]❌ {error}[/bold red]")
    if not result.success:
        sys.exit(1)


@cli.command()
@click.option("--keyword", "-k", "keywords", multiple=True, required=True, help="Keyword (repeatable)")
@click.option("--platform", "-p", type=click.Choice(["ios", "web", "both"]), default="ios")
@click.option("--apps/--no-apps", default=True, help="Search app pages")
@click.option("--flows", is_flag=True, help="Search flows")
@click.option("--screens", is_flag=True, help="Search screens")
@click.option("--max-results", "-n", type=int, default=None, help="Results per keyword")
@click.option("--debug", is_flag=True, help="Visible browser, screenshots and debug logs")
@click.option("--headless/--no-headless", default=True, help="Run the browser headless")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def search(keywords, platform, apps, flows, screens, max_results, debug, headless, as_json):
    """Run a progressive multi-phase search"""
    config = _configure(debug, headless)
    strategy = ComprehensiveStrategy(
        keywords=list(keywords),
        platform=platform,
        primary_path="apps" if apps else ("flows" if flows else "screens"),
        content_type_needs=ContentTypeNeeds(
            needs_comprehensive_apps=apps,
            needs_cross_app_flows=flows,
            needs_specific_screens=screens,
        ),
        platform_priority=PlatformPriority(
            ios_apps=1.0 if platform in ("ios", "both") else 0.0,
            web_apps=1.0 if platform in ("web", "both") else 0.0,
        ),
        max_results_per_keyword=max_results or config.default_max_results,
    )

    def show_phase(phase: SearchPhase):
        if as_json:
            return
        icon = {"running": "⏳", "completed": "✅", "failed": "❌"}[phase.status.value]
        line = f"{icon} [bold]{phase.phase}[/bold] {phase.message}"
        if phase.status.value != "running":
            line += f" [dim]({len(phase.results)} results, {phase.duration:.1f}s)[/dim]"
        console.print(line)

    async def go():
        async with browser_session(config) as engine:
            return await ProgressiveSearchEngine(engine).run(strategy, debug, on_phase=show_phase)

    results = _run(go())
    if as_json:
        click.echo(json.dumps(results.to_dict(), indent=2))
    else:
        console.print(_results_table("Curated results", results.curated))
        if results.success:
            console.print(f"[bold green]{summary_text(results)}[/bold green]")
    if not results.success:
        console.print(f"[bold red]❌ {results.error}[/bold red]")
        sys.exit(1)


@cli.command()
def tools():
    """List the automation server's tools"""
    config = _configure(False, True)

    async def go():
        client = MCPClient(config)
        await client.connect()
        try:
            return client.server_info, list(client.available_tools)
        finally:
            await client.disconnect()

    info, names = _run(go())
    table = Table(title=f"Tools of {info.get('name', 'automation server')} {info.get('version', '')}".strip())
    table.add_column("Tool", style="cyan")
    for name in names:
        table.add_row(name)
    console.print(table)


def main():
    """Synchronous entry point"""
    cli()


if __name__ == "__main__":
    main()
