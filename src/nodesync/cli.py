"""CLI interface for nodesync."""

from __future__ import annotations

import asyncio
from collections import deque

import httpx
import typer
from rich.console import Console

from nodesync.config import AppConfig, ensure_dirs, load_config, save_config
from nodesync.errors import UnexpectedRpcPayload
from nodesync.sync.events import SyncEvent
from nodesync.sync.status import BlockStale, Syncing, parse_quantity

app = typer.Typer(
    name="nodesync",
    help="Watch a blockchain node until it has caught up with the network.",
    add_completion=False,
)
console = Console()


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


# ---------------------------------------------------------------------------
# Control socket helper
# ---------------------------------------------------------------------------


def send_command(cmd: str, params: dict | None = None) -> dict:
    """Send a command to a running ``nodesync watch`` over its Unix socket.

    Raises a user-friendly error (via ``typer.Exit``) when the socket does
    not exist or the connection is refused.
    """
    sock = AppConfig().socket_path
    if not sock.exists():
        console.print(
            f"[red]No watcher is running.[/red]  (socket not found at [bold]{sock}[/bold])",
        )
        raise typer.Exit(1)

    payload: dict = {"cmd": cmd}
    if params is not None:
        payload["params"] = params

    transport = httpx.HTTPTransport(uds=str(sock))
    try:
        with httpx.Client(transport=transport, base_url="http://localhost") as client:
            response = client.post("/rpc", json=payload, timeout=10.0)
            response.raise_for_status()
            return response.json()
    except httpx.ConnectError:
        console.print(
            "[red]Could not connect to the watcher.[/red]  Is it running?  Try [bold]nodesync watch[/bold].",
        )
        raise typer.Exit(1) from None
    except httpx.HTTPStatusError as exc:
        console.print(f"[red]Watcher returned an error:[/red] {exc.response.status_code}")
        raise typer.Exit(1) from exc


def _report(result: dict, success: str) -> None:
    if result.get("ok", True):
        console.print(f"[green]{success}[/green]")
        return
    console.print(f"[red]Error:[/red] {result.get('error', 'unknown')}")
    raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _format_duration(seconds: float) -> str:
    """Format seconds into a human-readable duration string."""
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"


def _describe_progress(data: object) -> str:
    """Render a progress payload as a short one-liner."""
    if isinstance(data, BlockStale):
        return f"block {data.number} is {_format_duration(data.age)} behind"
    if isinstance(data, Syncing):
        progress = data.progress
        try:
            current = parse_quantity(progress.get("currentBlock", 0))
            highest = parse_quantity(progress.get("highestBlock", 0))
        except UnexpectedRpcPayload:
            return str(progress)
        if highest:
            return f"block {current} of {highest} ({current / highest:.1%})"
        return f"block {current}"
    return str(data)


def _print_event(event: SyncEvent, args: tuple) -> None:
    if event is SyncEvent.STARTING:
        console.print("[blue]Sync started[/blue]")
    elif event is SyncEvent.PROGRESS:
        console.print(f"  [dim]syncing:[/dim] {_describe_progress(args[0])}", highlight=False)
    elif event is SyncEvent.FINISHED:
        console.print("[green]Sync finished[/green]")
    elif event is SyncEvent.ERROR:
        console.print(f"[red]Sync failed:[/red] {args[0]}")
    elif event is SyncEvent.STOPPED:
        console.print("[yellow]Sync stopped[/yellow]")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def watch(
    url: str = typer.Option("", "--url", "-u", help="Node JSON-RPC URL (default: config node.rpc_url)"),
    interval_ms: int = typer.Option(0, "--interval-ms", help="Poll interval in milliseconds (default: config)"),
    log_level: str = typer.Option("", "--log-level", help="Log level (default: config service.log_level)"),
    control: bool = typer.Option(True, "--control/--no-control", help="Serve the control socket"),
    keep_running: bool = typer.Option(False, "--keep-running", help="Keep watching after the first session ends"),
) -> None:
    """Watch the node's sync progress until it has caught up."""
    from nodesync.logging import setup_logging
    from nodesync.runner import run_watch
    from nodesync.sync.monitor import SyncResolution

    cfg = load_config()
    if url:
        cfg.node.rpc_url = url
    if interval_ms > 0:
        cfg.monitor.poll_interval_ms = interval_ms

    ensure_dirs()
    setup_logging(log_level or cfg.service.log_level, cfg.log_dir)

    console.print(f"Watching [bold]{cfg.node.rpc_url}[/bold]")
    state = asyncio.run(
        run_watch(
            cfg,
            on_event=_print_event,
            serve_control=control,
            exit_after_session=not keep_running,
        )
    )

    monitor = state.monitor
    if monitor is not None and monitor.last_resolution is SyncResolution.ERROR:
        raise typer.Exit(1)


@app.command()
def status() -> None:
    """Show the running watcher's node state and sync session."""
    result = send_command("status")
    data = result.get("data", result) if isinstance(result, dict) else result

    console.print()
    if data.get("node_url"):
        console.print(f"  [bold]Node:[/bold]    {data['node_url']} ({data.get('node_state', 'unknown')})")

    sync_info = data.get("sync") or {}
    state = sync_info.get("state", "unknown")
    state_colors = {
        "idle": "green",
        "syncing": "blue",
        "finished": "green",
        "skipped": "yellow",
        "stopped": "yellow",
        "errored": "red",
    }
    color = state_colors.get(state, "white")
    console.print(f"  [bold]State:[/bold]   [{color}]{state}[/{color}]")

    uptime_secs = data.get("uptime_seconds")
    if uptime_secs is not None:
        console.print(f"  [bold]Uptime:[/bold]  {_format_duration(uptime_secs)}")

    if sync_info.get("last_resolution"):
        console.print(f"  [bold]Last:[/bold]    {sync_info['last_resolution']}")

    session = sync_info.get("session")
    if session:
        console.print("\n  [bold cyan]Session[/bold cyan]")
        console.print(f"    started:  {session['started_at']}")
        console.print(f"    checks:   {session['ticks']}")
    console.print()


@app.command()
def skip() -> None:
    """Skip the sync session in progress and treat the node as synced."""
    _report(send_command("skip"), "Sync skipped.")


@app.command()
def stop() -> None:
    """Stop the sync session in progress without a result."""
    _report(send_command("stop"), "Sync stopped.")


@app.command()
def sync() -> None:
    """Start a new sync session on the running watcher."""
    _report(send_command("sync_now"), "Sync started.")


@app.command()
def logs(
    tail_lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    sync: bool = typer.Option(False, "--sync", help="Show sync.log (JSON) instead of service.log"),
) -> None:
    """Show recent log output (use --sync for the JSON sync log)."""
    filename = "sync.log" if sync else "service.log"
    log_file = AppConfig().log_dir / filename
    if not log_file.exists():
        console.print(f"[yellow]Log file not found:[/yellow] {log_file}")
        raise typer.Exit(1)

    with open(log_file, encoding="utf-8") as fh:
        last_lines = deque(fh, maxlen=tail_lines)

    if not last_lines:
        console.print("[dim]Log file is empty.[/dim]")
        return

    for line in last_lines:
        _print_log_line(line)


def _log_line_style(line: str) -> str | None:
    """Return a Rich style string based on the log level found in *line*."""
    lower = line.lower()
    if "[error" in lower or "[critical" in lower or '"level": "error"' in lower or '"level": "critical"' in lower:
        return "red"
    if "[warning" in lower or '"level": "warning"' in lower:
        return "yellow"
    if "[debug" in lower or '"level": "debug"' in lower:
        return "dim"
    return None


def _print_log_line(line: str) -> None:
    line = line.rstrip("\n")
    if not line:
        return
    console.print(line, style=_log_line_style(line), highlight=False, markup=False)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration."""
    cfg = load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")
    for section_name in ("node", "monitor", "service"):
        section = getattr(cfg, section_name)
        console.print(f"[bold cyan]\\[{section_name}][/bold cyan]")
        for key, value in section.model_dump(mode="python").items():
            console.print(f"  {key} = {value}")
        console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. monitor.poll_interval_ms"),
    value: str = typer.Argument(help="New value"),
) -> None:
    """Set a configuration value (e.g. nodesync config set node.rpc_url http://host:8545)."""
    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. node.rpc_url).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = load_config()
    section_map = {
        "node": cfg.node,
        "monitor": cfg.monitor,
        "service": cfg.service,
    }

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    try:
        coerced = _coerce_value(value, fields[field_name].annotation)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model)(**section_data)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid value:[/red] {exc}")
        raise typer.Exit(1) from exc

    setattr(cfg, section_name, new_section)
    save_config(cfg)
    console.print(f"[green]Set[/green] {key} = {coerced}")


def _coerce_value(raw: str, field_type: type) -> object:
    """Coerce a string value to the expected field type."""
    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    if field_type is float:
        return float(raw)

    return raw
