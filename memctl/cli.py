from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.common import tools_from_config
from .commands.maintenance_cmds import (
    capacity_cmd,
    cleanup_cmd,
    health_cmd,
    hygiene_cmd,
    mcp_cmd,
)
from .commands.session_cmds import claims_cmd, sessions_cmd

app = typer.Typer(help="memctl: shared memory coordination for coding agents")


@app.command()
def sessions(
    limit: int = typer.Option(10, help="Max sessions (1-50)"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show recent sessions and their handoff summaries."""
    sessions_cmd(tools_from_config=tools_from_config, limit=limit, as_json=as_json)


@app.command()
def claims(
    keys: list[str] = typer.Argument(..., help="Memory keys to check"),
    exclude_session: str = typer.Option(None, help="Ignore claims held by this session"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Check other sessions' claims on memory keys."""
    claims_cmd(
        tools_from_config=tools_from_config,
        keys=keys,
        exclude_session=exclude_session,
        as_json=as_json,
    )


@app.command()
def capacity(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show project and organization memory capacity."""
    capacity_cmd(tools_from_config=tools_from_config, as_json=as_json)


@app.command()
def health(
    limit: int = typer.Option(20, help="Max memories to list"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """List the least healthy memories."""
    health_cmd(tools_from_config=tools_from_config, limit=limit, as_json=as_json)


@app.command()
def hygiene(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show the memory hygiene report."""
    hygiene_cmd(tools_from_config=tools_from_config, as_json=as_json)


@app.command()
def cleanup(
    stale_days: int = typer.Option(30, help="Days without update before a memory is stale"),
    limit: int = typer.Option(20, help="Max suggestions per category"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Suggest memories to archive or delete."""
    cleanup_cmd(
        tools_from_config=tools_from_config,
        stale_days=stale_days,
        limit=limit,
        as_json=as_json,
    )


@app.command()
def mcp() -> None:
    """Run the MCP server for coding agents."""
    mcp_cmd()


def main() -> None:
    app()


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
