from __future__ import annotations

import atexit
import logging
import os
from typing import Any, Dict, List, Optional, Union

try:
    from mcp.server.fastmcp import FastMCP
except Exception as exc:  # pragma: no cover
    raise SystemExit(
        "mcp package is required for the MCP server. Install with `pip install -e .`"
    ) from exc

from .config import MemctlConfig, load_config
from .tools import MemctlTools

logger = logging.getLogger(__name__)


def build_tools(cfg: MemctlConfig | None = None) -> MemctlTools:
    return MemctlTools.from_config(cfg or load_config(), cwd=os.getcwd())


def build_server(tools: MemctlTools | None = None) -> FastMCP:
    mcp = FastMCP("memctl")
    tools = tools or build_tools()

    def shutdown() -> None:
        tools.ledger.close_active("Auto-closed: MCP server process exited.")
        try:
            tools.close()
        except Exception as exc:
            logger.debug("client close failed", exc_info=exc)

    atexit.register(shutdown)

    @mcp.tool()
    def session(
        action: str,
        session_id: Optional[str] = None,
        summary: Optional[str] = None,
        keys_read: Optional[List[str]] = None,
        keys_written: Optional[List[str]] = None,
        tools_used: Optional[List[str]] = None,
        limit: Optional[int] = None,
        keys: Optional[List[str]] = None,
        exclude_session: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
        auto_extract_git: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Session lifecycle and coordination.

        Actions: start, end, history, claims_check, claim, rate_status.
        Call start at the beginning of work and end with a summary when done.
        Before a multi-step edit, claims_check the keys, then claim them.
        """
        return tools.session(
            action,
            session_id=session_id,
            summary=summary,
            keys_read=keys_read,
            keys_written=keys_written,
            tools_used=tools_used,
            limit=limit,
            keys=keys,
            exclude_session=exclude_session,
            ttl_minutes=ttl_minutes,
            auto_extract_git=auto_extract_git,
        )

    @mcp.tool()
    def memory_capacity() -> Dict[str, Any]:
        """Project and organization memory usage with guidance."""
        return tools.memory_capacity()

    @mcp.tool()
    def memory_store(
        key: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        priority: Optional[int] = None,
        expires_at: Optional[Union[int, str]] = None,
        ttl: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store or update a memory.

        expires_at takes epoch milliseconds or an ISO timestamp.
        ttl: session, pr, sprint or permanent.
        """
        return tools.memory_store(
            key,
            content,
            metadata=metadata,
            tags=tags,
            priority=priority,
            expires_at=expires_at,
            ttl=ttl,
        )

    @mcp.tool()
    def memory_delete(key: str) -> Dict[str, Any]:
        """Permanently delete a memory by key."""
        return tools.memory_delete(key)

    @mcp.tool()
    def memory_archive(key: str, archive: bool = True) -> Dict[str, Any]:
        """Archive a memory (archive=false restores it). Archived memories free quota."""
        return tools.memory_archive(key, archive)

    @mcp.tool()
    def memory_health(limit: int = 50) -> Dict[str, Any]:
        """Health scores for active memories, lowest first."""
        return tools.memory_health(limit)

    @mcp.tool()
    def memory_hygiene() -> Dict[str, Any]:
        """Health buckets, stale and expiring memories, weekly growth."""
        return tools.memory_hygiene()

    @mcp.tool()
    def memory_suggest_cleanup(stale_days: int = 30, limit: int = 20) -> Dict[str, Any]:
        """Stale and expired memories that are candidates for archiving or deletion."""
        return tools.memory_suggest_cleanup(stale_days, limit)

    return mcp


def run() -> None:
    server = build_server()
    server.run()


if __name__ == "__main__":
    run()
