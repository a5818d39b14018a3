"""CLI entry point for vms-rules."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from . import __version__


# ── Helpers ──────────────────────────────────────────────


def _configure_logging(verbose: bool) -> None:
    """Console logging to stderr."""
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(log_format, datefmt=date_format))
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, handlers=[console], force=True)
    for noisy in ("aiohttp.access", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _load(config_path: str | None):
    """Load config, stores and a fully reloaded engine."""
    from .config import load_config
    from .engine import RuleEngine
    from .rules.store import ListsStore, RulesStore

    config = load_config(config_path)
    rules_store = RulesStore(config.rules_file)
    lists_store = ListsStore(config.lists_file)
    engine = RuleEngine(config)
    engine.reload_all(rules_store.load(), lists_store.load())
    return config, engine, rules_store, lists_store


def _read_events(path: Path):
    from .rules.models import Event

    for n, line in enumerate(path.read_text().splitlines(), 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            yield Event.model_validate(json.loads(line))
        except ValueError as e:
            click.echo(f"  ! line {n}: skipped ({e.__class__.__name__})", err=True)


# ── CLI Commands ─────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="vms-rules")
@click.option("--config", "config_path", default=None, help="Config file path")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """vms-rules — fire actions on camera detection events."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Validate the configured rules and lookup lists."""
    from .exceptions import ConfigurationError

    try:
        config, engine, rules_store, lists_store = _load(ctx.obj["config_path"])
    except ConfigurationError as e:
        click.echo(f"✗ Configuration rejected: {e}")
        raise SystemExit(1)

    click.echo(f"✓ {len(engine.index)} active rule(s) from {rules_store.path}")
    click.echo(f"✓ {len(engine.registry.names())} lookup list(s) from {lists_store.path}")
    click.echo(f"  Schedules evaluated in {config.timezone}")


@main.command()
@click.argument("events_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--timeout", default=60.0, type=float, help="Max seconds to wait for deliveries")
@click.pass_context
def replay(ctx: click.Context, events_file: Path, timeout: float) -> None:
    """Feed a JSON-lines file of events through the engine."""
    from .exceptions import ConfigurationError

    try:
        _, engine, _, _ = _load(ctx.obj["config_path"])
    except ConfigurationError as e:
        click.echo(f"✗ Configuration rejected: {e}")
        raise SystemExit(1)

    async def _run() -> bool:
        await engine.start()
        try:
            for event in _read_events(events_file):
                results = engine.on_event(event)
                names = ", ".join(r.rule.name for r in results) or "no match"
                click.echo(f"  {event.id} ({event.type} @ {event.camera_name}) → {names}")
            return await engine.drain(timeout)
        finally:
            await engine.close()

    drained = asyncio.run(_run())
    click.echo("")
    for kind, count in engine.reporter.summary().items():
        click.echo(f"  {kind}: {count}")
    if not drained:
        click.echo(f"  ! deliveries still pending after {timeout}s")
        raise SystemExit(2)


@main.command()
@click.option("--host", default=None, help="Override API host")
@click.option("--port", default=None, type=int, help="Override API port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the HTTP ingestion/admin API."""
    from aiohttp import web

    from .api import create_api_routes
    from .exceptions import ConfigurationError

    try:
        config, engine, rules_store, lists_store = _load(ctx.obj["config_path"])
    except ConfigurationError as e:
        click.echo(f"✗ Configuration rejected: {e}")
        raise SystemExit(1)

    app = create_api_routes(engine, rules_store, lists_store)
    web.run_app(app, host=host or config.api.host, port=port or config.api.port)


if __name__ == "__main__":
    main()
