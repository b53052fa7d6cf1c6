from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any

from .utils import decode_str_list, parse_timestamp


def _int_field(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return 0


@dataclass
class Memory:
    key: str
    content: str = ""
    metadata: Any = None
    tags: list[str] = field(default_factory=list)
    priority: int = 0
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    last_accessed_at: dt.datetime | None = None
    access_count: int = 0
    helpful_count: int = 0
    unhelpful_count: int = 0
    pinned_at: dt.datetime | None = None
    archived_at: dt.datetime | None = None
    expires_at: dt.datetime | None = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def is_pinned(self) -> bool:
        return self.pinned_at is not None

    def is_expired(self, now: dt.datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Memory:
        content = payload.get("content")
        return cls(
            key=str(payload.get("key") or ""),
            content=content if isinstance(content, str) else "",
            metadata=payload.get("metadata"),
            tags=decode_str_list(payload.get("tags")),
            priority=_int_field(payload, "priority"),
            created_at=parse_timestamp(payload.get("createdAt")),
            updated_at=parse_timestamp(payload.get("updatedAt")),
            last_accessed_at=parse_timestamp(payload.get("lastAccessedAt")),
            access_count=_int_field(payload, "accessCount"),
            helpful_count=_int_field(payload, "helpfulCount"),
            unhelpful_count=_int_field(payload, "unhelpfulCount"),
            pinned_at=parse_timestamp(payload.get("pinnedAt")),
            archived_at=parse_timestamp(payload.get("archivedAt")),
            expires_at=parse_timestamp(payload.get("expiresAt")),
        )


@dataclass
class SessionLog:
    session_id: str
    branch: str | None = None
    summary: str | None = None
    keys_read: list[str] = field(default_factory=list)
    keys_written: list[str] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)
    started_at: dt.datetime | None = None
    ended_at: dt.datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> SessionLog:
        branch = payload.get("branch")
        summary = payload.get("summary")
        return cls(
            session_id=str(payload.get("sessionId") or ""),
            branch=branch if isinstance(branch, str) and branch else None,
            summary=summary if isinstance(summary, str) and summary else None,
            keys_read=decode_str_list(payload.get("keysRead")),
            keys_written=decode_str_list(payload.get("keysWritten")),
            tools_used=decode_str_list(payload.get("toolsUsed")),
            started_at=parse_timestamp(payload.get("startedAt")),
            ended_at=parse_timestamp(payload.get("endedAt")),
        )


@dataclass
class Claim:
    session_id: str
    claimed_keys: list[str]
    expires_at: dt.datetime

    def is_active(self, now: dt.datetime) -> bool:
        return self.expires_at > now

    def conflicts_with(self, keys: set[str]) -> list[str]:
        return [key for key in self.claimed_keys if key in keys]
