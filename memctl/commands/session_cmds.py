from __future__ import annotations

from rich import print

from .common import compact_list, exit_on_error, print_json


def sessions_cmd(*, tools_from_config, limit: int, as_json: bool) -> None:
    """Show recent sessions, newest first."""

    tools = tools_from_config()
    try:
        result = exit_on_error(tools.session("history", limit=limit))
    finally:
        tools.close()
    if as_json:
        print_json(result)
        return
    sessions = result["sessions"]
    if not sessions:
        print("[yellow]No sessions recorded yet[/yellow]")
        return
    for item in sessions:
        state = "[green]active[/green]" if item["ended_at"] is None else f"ended {item['ended_at']}"
        branch = f" on {item['branch']}" if item["branch"] else ""
        print(f"[bold]{item['session_id']}[/bold]{branch} ({state})")
        if item["summary"]:
            print(f"  {item['summary']}")
        if item["keys_written"]:
            print(f"  [dim]wrote: {compact_list(item['keys_written'], 8)}[/dim]")


def claims_cmd(
    *, tools_from_config, keys: list[str], exclude_session: str | None, as_json: bool
) -> None:
    """Report other sessions' active claims that overlap the given keys."""

    tools = tools_from_config()
    try:
        result = exit_on_error(
            tools.session("claims_check", keys=keys, exclude_session=exclude_session)
        )
    finally:
        tools.close()
    if as_json:
        print_json(result)
        return
    print(f"Active sessions with claims: {result['active_sessions']}")
    if not result["conflicts"]:
        print("[green]No conflicts found[/green]")
        return
    for detail in result["details"]:
        print(
            f"[yellow]{detail['session_id']}[/yellow] holds "
            f"{compact_list(detail['conflicts'], 8)} until {detail['expires_at']}"
        )
