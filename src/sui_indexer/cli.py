"""CLI entry point for the sui_indexer daemon."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click

from sui_indexer.config import EXAMPLE_CONFIG, load_config
from sui_indexer.daemon import build_loop, run_daemon
from sui_indexer.errors import ConfigError, StorageError
from sui_indexer.models.records import ProcessedEvent
from sui_indexer.storage.sqlite import SQLiteStorageGateway


def _load(ctx: click.Context):
    """Load config or exit with the validation error."""
    try:
        cfg = load_config(ctx.obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())
    return cfg


def _event_json(event: ProcessedEvent) -> str:
    return json.dumps(
        {
            "id": str(event.id),
            "checkpoint_sequence": event.checkpoint_sequence,
            "transaction_digest": event.transaction_digest,
            "event_index": event.event_index,
            "timestamp": event.timestamp.isoformat(),
            "matched_rules": event.matched_rules,
            "tags": event.tags,
            "fields": event.canonical_fields,
        },
        default=str,
        sort_keys=True,
    )


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """sui_indexer - Checkpoint-driven Sui event indexer."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Daemon ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the ingestion loop."""
    cfg = _load(ctx)
    click.echo(f"Starting sui_indexer ({cfg.network.network}, {len(cfg.events.filters)} rules)")
    try:
        asyncio.run(run_daemon(cfg))
    except StorageError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show effective configuration."""
    cfg = _load(ctx)
    ev = cfg.events
    click.echo(f"Network:      {cfg.network.network}")
    click.echo(f"RPC URL:      {cfg.network.rpc_url}")
    click.echo(f"DB path:      {cfg.database.path}")
    click.echo(f"Start:        {ev.start_checkpoint if ev.start_checkpoint is not None else '(auto)'}")
    click.echo(f"Poll:         every {ev.poll_interval}s")
    click.echo(f"Batching:     {ev.batch_size} x {ev.max_concurrent_batches} concurrent")
    click.echo(f"Paging:       {ev.page_size} per page, {ev.max_pages_per_cycle} pages/cycle")
    click.echo(f"Transactions: {'indexed' if ev.index_transactions else 'skipped'}")
    click.echo(f"Navi pkgs:    {len(cfg.extensions.navi_packages)}")
    click.echo(f"Rules:        {len(ev.filters) or 'none (all events)'}")
    for rule in ev.filters:
        click.echo(f"  - {rule.label}")


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Probe the Sui node and the database."""
    cfg = _load(ctx)

    async def _health():
        loop = build_loop(cfg)
        store = loop.store
        try:
            await store.initialize()
            return await loop.health()
        finally:
            await loop.close()

    try:
        result = asyncio.run(_health())
    except StorageError as exc:
        click.echo(f"Database:   FAILED ({exc})")
        sys.exit(1)

    node = result.node
    if node.healthy:
        click.echo(f"Node:       OK (checkpoint {node.latest_checkpoint}, {node.latency_ms}ms)")
    else:
        click.echo(f"Node:       FAILED ({node.error})")
    click.echo(f"Database:   {'OK' if result.database else 'FAILED'}")
    if not result.healthy:
        sys.exit(1)


@cli.command()
@click.pass_context
def progress(ctx: click.Context) -> None:
    """Show stored checkpoint progress and record counts."""
    cfg = _load(ctx)

    async def _progress():
        store = SQLiteStorageGateway(cfg.database.path, cfg.database.health_timeout)
        await store.initialize()
        try:
            checkpoint = await store.get_progress()
            events = await store.count_events()
            transactions = await store.count_transactions()
        finally:
            await store.close()
        return checkpoint, events, transactions

    checkpoint, events, transactions = asyncio.run(_progress())
    click.echo(f"Checkpoint:   {checkpoint if checkpoint is not None else '(none)'}")
    click.echo(f"Events:       {events}")
    click.echo(f"Transactions: {transactions}")


@cli.command()
@click.argument("start", type=int)
@click.argument("end", type=int)
@click.pass_context
def events(ctx: click.Context, start: int, end: int) -> None:
    """Print stored events in a checkpoint range as JSON lines."""
    if start > end:
        raise click.BadParameter(f"START ({start}) is greater than END ({end})")
    cfg = _load(ctx)

    async def _events():
        store = SQLiteStorageGateway(cfg.database.path, cfg.database.health_timeout)
        await store.initialize()
        try:
            return await store.get_events_in_range(start, end)
        finally:
            await store.close()

    for event in asyncio.run(_events()):
        click.echo(_event_json(event))


@cli.command("example-config")
def example_config() -> None:
    """Print a sample TOML configuration."""
    click.echo(EXAMPLE_CONFIG, nl=False)


if __name__ == "__main__":
    cli()
