from __future__ import annotations

from rich import print

from .common import exit_on_error, print_json


def capacity_cmd(*, tools_from_config, as_json: bool) -> None:
    """Show project and organization memory usage."""

    tools = tools_from_config()
    try:
        result = exit_on_error(tools.memory_capacity())
    finally:
        tools.close()
    if as_json:
        print_json(result)
        return
    if result["is_full"]:
        color = "red"
    elif result["is_soft_full"] or result["is_approaching"]:
        color = "yellow"
    else:
        color = "green"
    print(f"[{color}]{result['guidance']}[/{color}]")


def health_cmd(*, tools_from_config, limit: int, as_json: bool) -> None:
    """List the least healthy active memories."""

    tools = tools_from_config()
    try:
        result = exit_on_error(tools.memory_health(limit))
    finally:
        tools.close()
    if as_json:
        print_json(result)
        return
    if not result["memories"]:
        print("[yellow]No active memories[/yellow]")
        return
    for item in result["memories"]:
        pinned = " [dim](pinned)[/dim]" if item["is_pinned"] else ""
        print(f"{item['health_score']:6.2f}  {item['bucket']:<8}  {item['key']}{pinned}")


def hygiene_cmd(*, tools_from_config, as_json: bool) -> None:
    """Summarize memory health buckets, staleness, expiry and growth."""

    tools = tools_from_config()
    try:
        report = exit_on_error(tools.memory_hygiene())
    finally:
        tools.close()
    if as_json:
        print_json(report)
        return

    print("[bold]Health[/bold]")
    for name, count in report["health_buckets"].items():
        print(f"- {name}: {count}")
    print(f"- Active memories: {report['capacity']['used']}")

    print("\n[bold]Stale[/bold]")
    if not report["stale_memories"]:
        print("- None")
    for item in report["stale_memories"]:
        print(f"- {item['key']} (last accessed {item['last_accessed_at'] or 'never'})")

    print("\n[bold]Expiring soon[/bold]")
    if not report["expiring_memories"]:
        print("- None")
    for item in report["expiring_memories"]:
        print(f"- {item['key']} (expires {item['expires_at']})")

    print("\n[bold]Weekly growth[/bold]")
    if not report["growth"]:
        print("- No data")
    for week in report["growth"]:
        print(f"- {week['week']}: {week['count']}")


def cleanup_cmd(*, tools_from_config, stale_days: int, limit: int, as_json: bool) -> None:
    """Suggest stale and expired memories to archive or delete."""

    tools = tools_from_config()
    try:
        result = exit_on_error(tools.memory_suggest_cleanup(stale_days, limit))
    finally:
        tools.close()
    if as_json:
        print_json(result)
        return
    print(f"[bold]Stale (not updated in {result['stale_days_threshold']} days)[/bold]")
    if not result["stale"]:
        print("- None")
    for item in result["stale"]:
        print(f"- {item['key']} (accessed {item['access_count']}x)")
    print("\n[bold]Expired[/bold]")
    if not result["expired"]:
        print("- None")
    for item in result["expired"]:
        print(f"- {item['key']} (expired {item['expires_at']})")


def mcp_cmd() -> None:
    """Run the MCP server over stdio."""

    from memctl.mcp_server import run as mcp_run

    mcp_run()
