"""Typer CLI for the Redis sink."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_delay,
    wait_exponential,
)

from kvsink.config.loader import load_sink_properties, parse_overrides
from kvsink.config.models import RedisSinkConfig, validate
from kvsink.errors import SinkError, StoreConnectionError
from kvsink.observability.health import Status, check_store
from kvsink.observability.logging import configure_logging
from kvsink.sinks.base import BatchReport, ConnectionStatus
from kvsink.sinks.redis import RedisSink
from kvsink.sinks.resolver import operation_for, resolve_mutations
from kvsink.sinks.transform import RecordTransform

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="kvsink", help="Redis key-value sink CLI")

_SET_HELP = "Override a sink property, e.g. --set db=3 (repeatable)"
_LOG_HELP = "Log level (debug, info, warning, error)"


def _load_props(
    config_path: str,
    overrides: list[str] | None,
    log_level: str,
) -> dict[str, Any]:
    configure_logging(log_level)
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_sink_properties(path, parse_overrides(overrides or []))
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        raise typer.Exit(1) from exc


def _validated(props: dict[str, Any]) -> RedisSinkConfig:
    try:
        return validate(props)
    except SinkError as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc


def _read_records(source: str) -> list[dict[str, Any]]:
    """Read JSON-lines records from a file, or stdin when *source* is ``-``."""
    if source == "-":
        lines = sys.stdin.read().splitlines()
    else:
        path = Path(source)
        if not path.exists():
            console.print(f"[red]Records file not found: {path}[/red]")
            raise typer.Exit(1)
        lines = path.read_text().splitlines()

    records: list[dict[str, Any]] = []
    for lineno, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            console.print(f"[red]Line {lineno}: invalid JSON:[/red] {exc}")
            raise typer.Exit(1) from exc
        if not isinstance(record, dict):
            console.print(f"[red]Line {lineno}: expected a JSON object[/red]")
            raise typer.Exit(1)
        records.append(record)
    return records


@app.command("validate")
def validate_cmd(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    overrides: list[str] | None = typer.Option(None, "--set", "-s", help=_SET_HELP),
    log_level: str = typer.Option("warning", "--log-level", help=_LOG_HELP),
) -> None:
    """Validate a sink configuration file."""
    cfg = _validated(_load_props(config_path, overrides, log_level))
    console.print(f"[green]Valid[/green]: {cfg.addr} db={cfg.db}")
    console.print(f"  keyType:      {cfg.key_mode}")
    if cfg.key:
        console.print(f"  key:          {cfg.key}")
    if cfg.field:
        console.print(f"  field:        {cfg.field}")
    console.print(f"  dataType:     {cfg.data_type}")
    ttl = cfg.ttl
    console.print(f"  expiration:   {ttl if ttl is not None else '(none)'}")
    console.print(f"  rowkindField: {cfg.rowkind_field or '(none)'}")


@app.command()
def ping(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    wait: float = typer.Option(
        0.0, "--wait", help="Keep retrying for up to this many seconds"
    ),
    overrides: list[str] | None = typer.Option(None, "--set", "-s", help=_SET_HELP),
    log_level: str = typer.Option("warning", "--log-level", help=_LOG_HELP),
) -> None:
    """Check that the configured store is reachable."""
    props = _load_props(config_path, overrides, log_level)

    async def _ping() -> None:
        if wait <= 0:
            await RedisSink().ping(props)
            return
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StoreConnectionError),
            stop=stop_after_delay(wait),
            wait=wait_exponential(multiplier=0.5, max=5),
            reraise=True,
        ):
            with attempt:
                await RedisSink().ping(props)

    try:
        asyncio.run(_ping())
    except SinkError as exc:
        console.print(f"[red]Ping failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    console.print(f"[green]PONG[/green] {props.get('addr', 'localhost:6379')}")


@app.command()
def health(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    overrides: list[str] | None = typer.Option(None, "--set", "-s", help=_SET_HELP),
    log_level: str = typer.Option("warning", "--log-level", help=_LOG_HELP),
) -> None:
    """Report store health as a table."""
    props = _load_props(config_path, overrides, log_level)
    result = asyncio.run(check_store(props))

    table = Table(title="Sink Health")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    style = "green" if result.status == Status.HEALTHY else "red"
    table.add_row(result.name, f"[{style}]{result.status}[/{style}]", result.detail)
    console.print(table)
    if not result.healthy:
        raise typer.Exit(1)


@app.command()
def resolve(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    record: str = typer.Argument(..., help="Record as a JSON object"),
    overrides: list[str] | None = typer.Option(None, "--set", "-s", help=_SET_HELP),
    log_level: str = typer.Option("warning", "--log-level", help=_LOG_HELP),
) -> None:
    """Dry run: show the store commands a record would produce."""
    cfg = _validated(_load_props(config_path, overrides, log_level))
    try:
        data = json.loads(record)
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid record JSON:[/red] {exc}")
        raise typer.Exit(1) from exc
    if not isinstance(data, dict):
        console.print("[red]Record must be a JSON object[/red]")
        raise typer.Exit(1)

    table = Table(title="Mutations")
    table.add_column("Operation", style="cyan")
    table.add_column("Key")
    table.add_column("Value")
    try:
        for item in RecordTransform(cfg).apply(data):
            for mutation in resolve_mutations(cfg, item):
                op = operation_for(mutation.rowkind, cfg.data_type)
                table.add_row(op.value, escape(mutation.key), escape(mutation.value))
    except SinkError as exc:
        console.print(f"[red]Resolution failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    console.print(table)


@app.command()
def load(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    records_path: str = typer.Argument(..., help="JSON-lines file, or - for stdin"),
    overrides: list[str] | None = typer.Option(None, "--set", "-s", help=_SET_HELP),
    log_level: str = typer.Option("info", "--log-level", help=_LOG_HELP),
) -> None:
    """Write a JSON-lines file of records to the store."""
    props = _load_props(config_path, overrides, log_level)
    records = _read_records(records_path)

    def _on_status(status: ConnectionStatus, reason: str) -> None:
        logger.info("cli.connection_status", status=status.value, reason=reason)

    async def _load() -> BatchReport:
        sink = RedisSink(sink_id="cli")
        await sink.provision(props)
        await sink.connect(_on_status)
        try:
            return await sink.collect_list(records)
        finally:
            await sink.close()

    try:
        report = asyncio.run(_load())
    except SinkError as exc:
        console.print(f"[red]Load failed:[/red] {exc}")
        raise typer.Exit(1) from exc

    table = Table(title="Load Summary")
    table.add_column("Records", justify="right")
    table.add_column("Written", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(str(report.total), str(report.succeeded), str(len(report.failures)))
    console.print(table)
    for failure in report.failures:
        console.print(f"  [red]#{failure.index}[/red] {escape(str(failure.error))}")
    if not report.ok:
        raise typer.Exit(1)
