from __future__ import annotations

import dataclasses
import datetime as dt
from pathlib import Path
from typing import Any

import pytest

from memctl.api_client import ApiError
from memctl.models import Memory, SessionLog
from memctl.utils import utc_now


class FakeMemoryApi:
    """In-memory stand-in for MemoryApiClient."""

    def __init__(self) -> None:
        self.memories: dict[str, Memory] = {}
        self.session_logs: dict[str, SessionLog] = {}
        self.capacity: dict[str, Any] = {"used": 0, "limit": 100, "orgUsed": 0, "orgLimit": 1000}
        self.stored: list[str] = []
        self.fail_session_logs = False
        self.fail_store: Exception | None = None
        self.honor_tag_filter = True
        self.closed = False

    def add_memory(self, memory: Memory) -> Memory:
        self.memories[memory.key] = memory
        return memory

    def add_session(self, log: SessionLog) -> SessionLog:
        self.session_logs[log.session_id] = log
        return log

    def close(self) -> None:
        self.closed = True

    def store_memory(
        self,
        key: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        *,
        tags: list[str] | None = None,
        priority: int | None = None,
        expires_at: dt.datetime | None = None,
    ) -> dict[str, Any]:
        if self.fail_store is not None:
            raise self.fail_store
        now = utc_now()
        existing = self.memories.get(key)
        self.memories[key] = Memory(
            key=key,
            content=content,
            metadata=metadata,
            tags=list(tags or []),
            priority=priority or 0,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            expires_at=expires_at,
        )
        self.stored.append(key)
        return {"memory": {"key": key}}

    def find_memory(self, key: str) -> Memory | None:
        return self.memories.get(key)

    def search_memories(
        self,
        query: str | None = None,
        *,
        prefix: str | None = None,
        limit: int = 20,
        tags: str | None = None,
    ) -> list[Memory]:
        rows = [
            memory
            for memory in self.memories.values()
            if (prefix is None or memory.key.startswith(prefix))
            and (tags is None or not self.honor_tag_filter or tags in memory.tags)
        ]
        return rows[:limit]

    def delete_memory(self, key: str) -> None:
        if self.memories.pop(key, None) is None:
            raise ApiError(404, "Memory not found")

    def archive_memory(self, key: str, archive: bool = True) -> dict[str, Any]:
        memory = self.memories.get(key)
        if memory is None:
            raise ApiError(404, "Memory not found")
        memory.archived_at = utc_now() if archive else None
        return {"key": key, "archived": archive}

    def list_all_memories(self, max_memories: int = 2000, page_size: int = 100) -> list[Memory]:
        return list(self.memories.values())[:max_memories]

    def get_memory_capacity(self) -> dict[str, Any]:
        return dict(self.capacity)

    def get_session_logs(self, limit: int = 20) -> list[SessionLog]:
        if self.fail_session_logs:
            raise ApiError(500, "session logs unavailable")
        # Rows are snapshots, like a real API response.
        return [dataclasses.replace(log) for log in self.session_logs.values()][:limit]

    def upsert_session_log(
        self,
        session_id: str,
        *,
        branch: str | None = None,
        summary: str | None = None,
        keys_read: list[str] | None = None,
        keys_written: list[str] | None = None,
        tools_used: list[str] | None = None,
        ended_at: dt.datetime | None = None,
    ) -> dict[str, Any]:
        log = self.session_logs.get(session_id)
        if log is None:
            log = SessionLog(session_id=session_id, started_at=utc_now())
            self.session_logs[session_id] = log
        if branch is not None:
            log.branch = branch
        if summary is not None:
            log.summary = summary
        if keys_read is not None:
            log.keys_read = keys_read
        if keys_written is not None:
            log.keys_written = keys_written
        if tools_used is not None:
            log.tools_used = tools_used
        if ended_at is not None:
            log.ended_at = ended_at
        return {"sessionLog": {"sessionId": session_id}}


@pytest.fixture
def fake_api() -> FakeMemoryApi:
    return FakeMemoryApi()


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MEMCTL_CONFIG", str(tmp_path / "config.json"))
    for name in (
        "MEMCTL_API_URL",
        "MEMCTL_TOKEN",
        "MEMCTL_ORG",
        "MEMCTL_PROJECT",
        "MEMCTL_RATE_LIMIT",
        "MEMCTL_BLOCK_ON_SOFT_FULL",
        "MEMCTL_AUTO_EXTRACT_GIT",
    ):
        monkeypatch.delenv(name, raising=False)
