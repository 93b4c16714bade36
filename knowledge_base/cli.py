"""
Command line interface untuk knowledge base ingestion
"""

import asyncio
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from knowledge_base.config import settings
from knowledge_base.crawl import CrawlerSettings
from knowledge_base.exceptions import KnowledgeBaseError
from knowledge_base.logger import Logger
from knowledge_base.pipeline import CrawlResponse, IngestionService
from knowledge_base.ratelimit import RateLimiterService, RateLimitSettings, recommendations
from knowledge_base.state import CrawlStateStore, InMemoryRagUrlRepository

app = typer.Typer(
    name="knowledge-base",
    help="Knowledge base ingestion: crawl, chunk, embed and index web content",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

# Error text may contain brackets, so markup stays off
console = Console(markup=False)


def build_ingestion_service() -> IngestionService:
    """Operator-side service: no rate limiting, process-local state"""
    return IngestionService(
        settings,
        CrawlStateStore(InMemoryRagUrlRepository()),
        rate_limiter=None,
        crawler_settings=CrawlerSettings.from_env(),
    )


def build_crawl_config(mode: str, max_pages: Optional[int], max_depth: Optional[int]) -> Dict[str, Any]:
    config: Dict[str, Any] = {"mode": mode}
    if max_pages is not None:
        config["maxPages"] = max_pages
    if max_depth is not None:
        config["maxDepth"] = max_depth
    return config


def print_crawl_result(result: CrawlResponse) -> None:
    stats = result.crawl_stats

    table = Table(title="Crawl Statistics", show_header=True, header_style="bold green")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Status", result.status.value)
    table.add_row("Namespace", result.namespace)
    table.add_row("Pages Found", str(stats.pages_found))
    table.add_row("Pages Processed", str(stats.pages_processed))
    table.add_row("Failed Pages", str(len(stats.failed_pages)))
    table.add_row("Total Tokens", str(stats.total_tokens))
    table.add_row("Duration", f"{stats.crawl_duration:.2f}s")
    console.print(table)

    if result.pages:
        pages_table = Table(title="Pages", show_header=True, header_style="bold blue")
        pages_table.add_column("URL", style="cyan")
        pages_table.add_column("Title")
        for page in result.pages:
            pages_table.add_row(page.url, page.title or "")
        console.print(pages_table)

    if stats.errors:
        console.print(Panel("\n".join(stats.errors), title="Errors", style="yellow"))
    if result.warning:
        console.print(f"Warning: {result.warning}", style="yellow")


@app.command()
def crawl(
    url: str = typer.Argument(..., help="Seed URL to crawl"),
    mode: str = typer.Option("single", help="Crawl mode: single, limited or deep"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", help="Page cap for limited mode"),
    max_depth: Optional[int] = typer.Option(None, "--max-depth", help="Hop limit for deep mode (2 or 3)"),
    provider: Optional[str] = typer.Option(None, help="Embedding provider: openai or google"),
    namespace: str = typer.Option("default", help="Vector index namespace"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Fetch pages without indexing them"),
    log_level: str = typer.Option("INFO", "--log-level"),
):
    """Crawl a URL and index its pages"""
    Logger.setup_logging(log_level)
    service = build_ingestion_service()
    crawl_config = build_crawl_config(mode, max_pages, max_depth)

    try:
        result = asyncio.run(service.crawl_ad_hoc(
            url,
            crawl_config,
            embedding_provider=provider,
            namespace=namespace,
            dry_run=dry_run,
        ))
    except KnowledgeBaseError as e:
        console.print(f"[{e.code.value}] {e.message}", style="red")
        raise typer.Exit(code=1)

    print_crawl_result(result)


@app.command("rate-limit-info")
def rate_limit_info():
    """Show the resolved rate limiting configuration"""
    limiter = RateLimiterService(RateLimitSettings.from_env())
    info = limiter.info()

    table = Table(title="Rate Limiting", show_header=True, header_style="bold green")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Mode", info["mode"])
    table.add_row("Per minute", str(info["config"]["max_per_minute"]))
    table.add_row("Per hour", str(info["config"]["max_per_hour"]))
    for mode, limit in info["config"]["crawl_limits"].items():
        table.add_row(f"{mode.title()} crawls per hour", str(limit))
    table.add_row("Redis configured", "yes" if info["environment"]["redis_configured"] else "no")
    table.add_row("Admins", str(info["admins"]["count"]))
    console.print(table)

    for warning in info["validation"]["warnings"]:
        console.print(f"Warning: {warning}", style="yellow")
    for hint in recommendations(info):
        console.print(f"- {hint}")


@app.command()
def serve(
    host: str = typer.Option(settings.host),
    port: int = typer.Option(settings.port),
    reload: bool = typer.Option(settings.reload),
):
    """Run the HTTP API"""
    import uvicorn

    uvicorn.run("main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
