from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from .config import MemctlConfig
from .models import Memory, SessionLog
from .utils import to_epoch_ms

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    def __init__(self, status: int, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.details = details


def _error_message(status: int, text: str) -> str:
    message = f"Request failed ({status})"
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text.strip() or message
    if isinstance(parsed, dict):
        for field in ("error", "message"):
            value = parsed.get(field)
            if isinstance(value, str) and value:
                return value
    return message


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def _memory_rows(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    rows = payload.get("memories")
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict) and row.get("key")]


class MemoryApiClient:
    """Client for the memory store REST API.

    Every request carries the bearer token plus the org and project slugs. Non-2xx
    responses raise ``ApiError``; transport failures surface as ``httpx`` errors.
    Nothing is retried here.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None,
        org: str | None,
        project: str | None,
        *,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if org:
            headers["X-Org-Slug"] = org
        if project:
            headers["X-Project-Slug"] = project
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, cfg: MemctlConfig, *, transport: httpx.BaseTransport | None = None
    ) -> MemoryApiClient:
        return cls(
            cfg.api_url,
            cfg.token,
            cfg.org,
            cfg.project,
            timeout_s=cfg.request_timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> MemoryApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        response = self._client.request(
            method,
            path,
            params=_drop_none(params) if params else None,
            json=body,
        )
        if response.status_code >= 400:
            text = response.text
            raise ApiError(response.status_code, _error_message(response.status_code, text), text)
        if response.status_code in {204, 205} or not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError:
            logger.debug("non-json response for %s %s", method, path)
            return response.text

    # Memories

    def store_memory(
        self,
        key: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        *,
        tags: list[str] | None = None,
        priority: int | None = None,
        expires_at: dt.datetime | None = None,
    ) -> Any:
        body = _drop_none(
            {
                "key": key,
                "content": content,
                "metadata": metadata,
                "tags": tags or None,
                "priority": priority,
                "expiresAt": to_epoch_ms(expires_at) if expires_at else None,
            }
        )
        return self._request("POST", "/memories", body=body)

    def get_memory(self, key: str) -> Memory:
        payload = self._request("GET", f"/memories/{quote(key, safe='')}")
        if isinstance(payload, dict) and isinstance(payload.get("memory"), dict):
            payload = payload["memory"]
        if not isinstance(payload, dict):
            raise ApiError(502, "unexpected memory payload")
        return Memory.from_api(payload)

    def find_memory(self, key: str) -> Memory | None:
        try:
            return self.get_memory(key)
        except ApiError as exc:
            if exc.status == 404:
                return None
            raise

    def archive_memory(self, key: str, archive: bool = True) -> Any:
        return self._request("POST", "/memories/archive", body={"key": key, "archive": archive})

    def delete_memory(self, key: str) -> Any:
        return self._request("DELETE", f"/memories/{quote(key, safe='')}")

    def search_memories(
        self,
        query: str | None = None,
        *,
        prefix: str | None = None,
        limit: int = 20,
        tags: str | None = None,
    ) -> list[Memory]:
        payload = self._request(
            "GET",
            "/memories",
            params={"q": query, "prefix": prefix, "limit": limit, "tags": tags},
        )
        return [Memory.from_api(row) for row in _memory_rows(payload)]

    def list_memories(
        self,
        limit: int = 100,
        offset: int = 0,
        *,
        tags: str | None = None,
        include_archived: bool = False,
    ) -> list[Memory]:
        payload = self._request(
            "GET",
            "/memories",
            params={
                "limit": limit,
                "offset": offset,
                "tags": tags,
                "include_archived": "true" if include_archived else None,
            },
        )
        return [Memory.from_api(row) for row in _memory_rows(payload)]

    def list_all_memories(self, max_memories: int = 2000, page_size: int = 100) -> list[Memory]:
        memories: list[Memory] = []
        offset = 0
        while len(memories) < max_memories:
            batch = self.list_memories(page_size, offset)
            memories.extend(batch)
            if len(batch) < page_size:
                break
            offset += page_size
        return memories[:max_memories]

    def get_memory_capacity(self) -> dict[str, Any]:
        payload = self._request("GET", "/memories/capacity")
        if not isinstance(payload, dict):
            raise ApiError(502, "unexpected capacity payload")
        return payload

    # Session logs

    def get_session_logs(self, limit: int = 20) -> list[SessionLog]:
        payload = self._request("GET", "/session-logs", params={"limit": limit})
        rows = payload.get("sessionLogs") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            return []
        return [
            SessionLog.from_api(row)
            for row in rows
            if isinstance(row, dict) and row.get("sessionId")
        ]

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
    ) -> Any:
        body = _drop_none(
            {
                "sessionId": session_id,
                "branch": branch,
                "summary": summary,
                "keysRead": keys_read,
                "keysWritten": keys_written,
                "toolsUsed": tools_used,
                "endedAt": to_epoch_ms(ended_at) if ended_at else None,
            }
        )
        return self._request("POST", "/session-logs", body=body)
