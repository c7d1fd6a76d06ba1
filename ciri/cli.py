"""
CLI Module: Typer-based command-line interface.
"""

from __future__ import annotations

from typing import Optional

import typer

app = typer.Typer(
    name="ciri",
    help="ciri: Telegram bot posting random pr0gramm items without repeats",
)


@app.command()
def run(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to config YAML file"
    ),
) -> None:
    """Start the bot."""
    from ciri.main import main as run_main

    run_main(config)


@app.command("check-config")
def check_config(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to config YAML file"
    ),
) -> None:
    """Validate configuration file without starting the bot."""
    from ciri.config import load_config

    try:
        cfg = load_config(config)
        typer.echo("✅ Configuration is valid.")
        typer.echo(f"   Telegram API ID: {cfg.telegram.api_id}")
        typer.echo(f"   Cache file:      {cfg.cache.path}")
        typer.echo(f"   Cache capacity:  {cfg.cache.capacity} per chat")
        typer.echo(f"   Command prefix:  {cfg.commands.prefix}")
        typer.echo(f"   Aliases:         {', '.join(cfg.commands.aliases) or '-'}")
    except Exception as e:
        typer.echo(f"❌ Config error: {e}", err=True)
        raise typer.Exit(1)


@app.command("cache-stats")
def cache_stats(
    path: str = typer.Argument("data/cache.json", help="Cache file to inspect"),
    capacity: int = typer.Option(128, "--capacity", help="Per-chat capacity"),
) -> None:
    """Show how many items are remembered per chat."""
    from ciri.dedup import codec
    from ciri.errors import CacheLoadError

    try:
        cache = codec.load(path, capacity)
    except CacheLoadError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"📦 {cache.total_entries()} entries in {cache.scope_count} chats")
    snapshot = cache.snapshot()
    for scope in sorted(snapshot):
        typer.echo(f"   {scope}: {len(snapshot[scope])}/{capacity}")


if __name__ == "__main__":
    app()
