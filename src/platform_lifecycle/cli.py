"""Typer CLI for platform lifecycle management."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import Any

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from platform_lifecycle.client import DEFAULT_SERVER, PlatformClient
from platform_lifecycle.config.loader import load_service_config
from platform_lifecycle.errors import PlatformError
from platform_lifecycle.progress.codec import ProgressMessage

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="platforms", help="Manage platforms (base build templates)")

ServerOption = typer.Option(
    DEFAULT_SERVER, "--server", envvar="PLATFORMS_SERVER", help="API base URL"
)


def _read_dockerfile(path: str | None) -> bytes | None:
    if path is None:
        return None
    p = Path(path)
    if not p.exists():
        console.print(f"[red]Dockerfile not found: {escape(str(p))}[/red]")
        raise typer.Exit(1)
    return p.read_bytes()


async def _render(stream: AsyncIterator[ProgressMessage]) -> bool:
    """Print progress as it arrives; returns True when no error was reported."""
    ok = True
    async for message in stream:
        if message.is_error:
            ok = False
            console.print(f"[red]Error:[/red] {escape(message.error)}")
        elif message.message:
            # Build output carries its own newlines; plain-text lines do not.
            end = "" if message.message.endswith("\n") else "\n"
            console.print(message.message, end=end, markup=False, highlight=False)
    return ok


def _run(
    server: str,
    operation: Callable[[PlatformClient], Awaitable[Any]],
) -> Any:
    async def _main() -> Any:
        async with PlatformClient(server) as client:
            return await operation(client)

    try:
        return asyncio.run(_main())
    except PlatformError as exc:
        console.print(f"[red]Error:[/red] {escape(exc.message)}")
        raise typer.Exit(1) from exc


def _finish(ok: bool, success: str) -> None:
    if not ok:
        raise typer.Exit(1)
    console.print(f"[green]{success}[/green]")


@app.command()
def add(
    name: str = typer.Argument(..., help="Platform name"),
    dockerfile: str | None = typer.Option(None, "--dockerfile", help="Dockerfile URL"),
    file: str | None = typer.Option(None, "--file", "-f", help="Local Dockerfile"),
    server: str = ServerOption,
) -> None:
    """Add a platform from a Dockerfile URL or a local Dockerfile."""
    content = _read_dockerfile(file)
    ok = _run(
        server,
        lambda c: _render(
            c.add(name, dockerfile=dockerfile, dockerfile_content=content)
        ),
    )
    _finish(ok, f"Platform {name} successfully added!")


@app.command()
def update(
    name: str = typer.Argument(..., help="Platform name"),
    dockerfile: str | None = typer.Option(None, "--dockerfile", help="Dockerfile URL"),
    file: str | None = typer.Option(None, "--file", "-f", help="Local Dockerfile"),
    disabled: bool | None = typer.Option(
        None,
        "--disable/--enable",
        help="Disable or enable the platform for new builds",
    ),
    server: str = ServerOption,
) -> None:
    """Rebuild a platform and/or toggle whether new apps may use it."""
    content = _read_dockerfile(file)
    ok = _run(
        server,
        lambda c: _render(
            c.update(
                name,
                dockerfile=dockerfile,
                dockerfile_content=content,
                disabled=disabled,
            )
        ),
    )
    _finish(ok, f"Platform {name} successfully updated!")


@app.command()
def remove(
    name: str = typer.Argument(..., help="Platform name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    server: str = ServerOption,
) -> None:
    """Remove a platform."""
    if not yes:
        confirm = typer.confirm(f"Remove platform '{name}'?")
        if not confirm:
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)
    ok = _run(server, lambda c: _render(c.remove(name)))
    _finish(ok, f"Platform {name} successfully removed!")


@app.command("list")
def list_platforms(
    enabled_only: bool = typer.Option(
        False, "--enabled-only", help="Hide disabled platforms"
    ),
    server: str = ServerOption,
) -> None:
    """List platforms."""
    platforms = _run(server, lambda c: c.list_platforms(enabled_only=enabled_only))
    if not platforms:
        console.print("[yellow]No platforms available[/yellow]")
        return

    table = Table(title="Platforms")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Version")
    table.add_column("Last build")
    for p in platforms:
        status = "[red]disabled[/red]" if p["disabled"] else "[green]enabled[/green]"
        table.add_row(p["name"], status, str(p["version"]), p["last_built_at"])
    console.print(table)


@app.command()
def info(
    name: str = typer.Argument(..., help="Platform name"),
    server: str = ServerOption,
) -> None:
    """Show a platform's details."""
    platform = _run(server, lambda c: c.info(name))
    console.print(f"[cyan]{escape(platform['name'])}[/cyan]")
    for key in ("disabled", "version", "dockerfile", "inline", "last_built_at"):
        console.print(f"  {key}: {escape(str(platform.get(key, '')))}")


@app.command("validate-config")
def validate_config(
    config_path: str | None = typer.Option(None, "--config", help="Service YAML"),
) -> None:
    """Validate a service configuration file."""
    try:
        cfg = load_service_config(config_path)
    except Exception as exc:
        console.print(f"[red]Validation error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    console.print(f"[green]Valid[/green]: active provisioner={cfg.active_provisioner}")
    for p in cfg.provisioners:
        console.print(f"  provisioner: {p.name} ({p.type})")
    console.print(f"  binding policy: {cfg.binding_policy}")
    console.print(f"  listen: {cfg.server.host}:{cfg.server.port}")


@app.command()
def serve(
    config_path: str | None = typer.Option(None, "--config", help="Service YAML"),
    host: str | None = typer.Option(None, "--host", help="Override listen host"),
    port: int | None = typer.Option(None, "--port", help="Override listen port"),
) -> None:
    """Run the platform lifecycle API server."""
    import uvicorn

    from platform_lifecycle.api.app import create_app
    from platform_lifecycle.observability.logging import configure_logging

    cfg = load_service_config(config_path)
    if host is not None:
        cfg.server.host = host
    if port is not None:
        cfg.server.port = port
    configure_logging(cfg.logging)
    logger.info("service.starting", host=cfg.server.host, port=cfg.server.port)
    uvicorn.run(
        create_app(cfg),
        host=cfg.server.host,
        port=cfg.server.port,
        log_level=cfg.logging.level.lower(),
    )
