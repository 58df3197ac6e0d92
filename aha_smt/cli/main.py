"""CLI entry point for the Aha! request-acceleration layer.

Provides commands to fetch upstream resources through the cache and rate
limiter, to exercise the limiter with a synthetic burst, and to run the
mock upstream server.
"""

import asyncio
import json
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
import httpx
from rich.console import Console
from rich.table import Table

from aha_smt.fetcher.aha_client import AhaClient
from aha_smt.fetcher.errors import AhaError
from aha_smt.fetcher.http_client import AsyncHTTPClient
from aha_smt.fetcher.rate_limiter import RateLimiter
from aha_smt.models.config import AhaConfig, ConfigManager
from aha_smt.models.data_models import CacheStats
from aha_smt.monitoring.logger import StructuredLogger


console = Console()
err_console = Console(stderr=True)


def _parse_params(pairs: Tuple[str, ...]) -> Dict[str, str]:
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got: {pair}", param_hint="--param")
        params[key] = value
    return params


def _failed_url(error: httpx.HTTPError) -> str:
    try:
        return str(error.request.url)
    except RuntimeError:
        return "upstream"


def _load_config(ctx: click.Context) -> AhaConfig:
    cli_overrides = {}
    if ctx.obj.get("log_level"):
        cli_overrides["log_level"] = ctx.obj["log_level"].upper()
    return ConfigManager(ctx.obj["config_path"]).load_config(cli_overrides)


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default="config/aha-smt.yaml",
    help="Path to configuration YAML file",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.version_option(version="0.1.0", prog_name="aha-smt")
@click.pass_context
def main(ctx: click.Context, config_path: Path, log_level: Optional[str]) -> None:
    """
    Aha! SMT - cached, rate-limited access to the Aha! API.

    Examples:

        # Fetch a release's features twice; the second call is a cache hit
        $ aha-smt get /releases/123/features -p fields=id,name,score --repeat 2

        # See how the limiter spaces out 40 concurrent calls
        $ aha-smt burst --count 40

        # Serve the mock upstream on port 8001
        $ aha-smt mock-server --port 8001
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


@main.command()
@click.argument("path")
@click.option("--param", "-p", "params", multiple=True, help="Query parameter as key=value")
@click.option("--ttl", type=float, help="Cache TTL in seconds for this request")
@click.option("--repeat", type=int, default=1, show_default=True, help="Number of times to fetch")
@click.pass_context
def get(ctx: click.Context, path: str, params: Tuple[str, ...], ttl: Optional[float], repeat: int) -> None:
    """Fetch PATH from the upstream API through the cache and limiter."""
    try:
        config = _load_config(ctx)
        config.require_credentials()
        query = _parse_params(params)
        payload, stats = asyncio.run(_fetch(config, path, query, ttl, repeat))
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except AhaError as e:
        err_console.print(f"[red]Error:[/red] {e.message}", style="bold red")
        sys.exit(1)
    except httpx.HTTPError as e:
        err_console.print(f"[red]Error:[/red] request to {_failed_url(e)} failed: {e}", style="bold red")
        sys.exit(1)

    click.echo(json.dumps(payload, indent=2))
    _display_cache_stats(stats)


async def _fetch(
    config: AhaConfig,
    path: str,
    params: Dict[str, str],
    ttl: Optional[float],
    repeat: int,
) -> Tuple[object, CacheStats]:
    logger = StructuredLogger(level=config.log_level)
    async with AsyncHTTPClient(
        api_token=config.aha_api_token,
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
    ) as http_client:
        client = AhaClient(config, http_client, logger=logger)
        payload = None
        for _ in range(max(1, repeat)):
            payload = await client.fetch(path, params=params or None, cache_ttl=ttl)
        await client.aclose()
        return payload, client.cache.stats


@main.command()
@click.option("--count", "-n", type=int, default=40, show_default=True, help="Concurrent acquisitions")
@click.pass_context
def burst(ctx: click.Context, count: int) -> None:
    """Drive COUNT concurrent acquisitions through the configured limiter."""
    config = _load_config(ctx)
    latencies = asyncio.run(_run_burst(config, count))

    table = Table(title=f"Rate limiter burst ({count} calls)")
    table.add_column("Call", justify="right", style="cyan")
    table.add_column("Waited (ms)", justify="right", style="green")
    for index, latency in enumerate(latencies, start=1):
        table.add_row(str(index), f"{latency * 1000:.1f}")

    console.print(table)
    console.print(
        f"Burst capacity: {config.rate_limit_burst}, "
        f"refill: {config.rate_limit_refill_per_second}/s"
    )


async def _run_burst(config: AhaConfig, count: int) -> List[float]:
    limiter = RateLimiter.from_config(config)
    start = time.monotonic()

    async def one() -> float:
        await limiter.acquire()
        return time.monotonic() - start

    return sorted(await asyncio.gather(*(one() for _ in range(count))))


@main.command("mock-server")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8001, show_default=True)
@click.option("--error-rate", type=float, default=0.0, show_default=True, help="Simulated failure rate")
def mock_server(host: str, port: int, error_rate: float) -> None:
    """Run the mock Aha! API (point base_url at http://HOST:PORT/api/v1)."""
    import uvicorn

    from aha_smt.mock_servers import create_mock_app

    uvicorn.run(create_mock_app(error_rate=error_rate), host=host, port=port)


def _display_cache_stats(stats: CacheStats) -> None:
    table = Table(title="Cache", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Hits", str(stats.hits))
    table.add_row("Stale hits", str(stats.stale_hits))
    table.add_row("Misses", str(stats.misses))
    table.add_row("Sets", str(stats.sets))
    table.add_row("Hit rate", f"{stats.hit_rate * 100:.1f}%")
    err_console.print(table)


if __name__ == "__main__":
    main()
