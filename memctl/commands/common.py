from __future__ import annotations

import json
import os
from typing import Any

import typer
from rich import print

from memctl.config import load_config, read_config_file
from memctl.tools import MemctlTools


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def tools_from_config() -> MemctlTools:
    read_config_or_exit()
    return MemctlTools.from_config(load_config(), cwd=os.getcwd())


def exit_on_error(result: dict[str, Any]) -> dict[str, Any]:
    if result.get("is_error"):
        print(f"[red]{result.get('error')}[/red]")
        raise typer.Exit(code=1)
    return result


def print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def compact_list(items: list[str], limit: int) -> str:
    if not items:
        return "-"
    if len(items) > limit:
        items = items[:limit] + [f"... (+{len(items) - limit} more)"]
    return ", ".join(items)
