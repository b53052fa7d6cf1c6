"""Agent-facing operations.

Each method returns a JSON-serializable dict and never raises: failures come back
as ``{"error": "...", "is_error": True}`` so an agent can read and adapt.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Sequence
from typing import Any

from .api_client import ApiError, MemoryApiClient
from .capacity import (
    CapacityView,
    check_admission,
    evaluate,
    format_capacity_guidance,
    has_memory_full_error,
)
from .claims import ClaimRegistry
from .config import MemctlConfig
from .errors import RateLimitExceeded, ValidationError
from .git_context import GitContextSource, NullGitContext, ShellGitContext
from .health import hygiene_report, rank_by_health, suggest_cleanup
from .rate_limit import RateLimiter
from .sessions import SessionLedger
from .utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

SESSION_ACTIONS = ("start", "end", "history", "claims_check", "claim", "rate_status")

TTL_PRESETS = {
    "session": dt.timedelta(hours=24),
    "pr": dt.timedelta(days=7),
    "sprint": dt.timedelta(days=14),
}


def error_response(prefix: str, error: BaseException | str) -> dict[str, Any]:
    message = error.message if isinstance(error, ApiError) else str(error)
    payload: dict[str, Any] = {"error": f"{prefix}: {message}", "is_error": True}
    if isinstance(error, ApiError):
        payload["status"] = error.status
    return payload


class MemctlTools:
    def __init__(
        self,
        client: MemoryApiClient,
        *,
        config: MemctlConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        git: GitContextSource | None = None,
    ) -> None:
        self.config = config or MemctlConfig()
        self.client = client
        self.rate_limiter = rate_limiter or RateLimiter(self.config.rate_limit)
        self.ledger = SessionLedger(
            client,
            git or NullGitContext(),
            stale_after_hours=self.config.stale_session_hours,
        )
        self.claims = ClaimRegistry(client, self.rate_limiter)

    @classmethod
    def from_config(cls, cfg: MemctlConfig, *, cwd: str | None = None) -> MemctlTools:
        return cls(
            MemoryApiClient.from_config(cfg),
            config=cfg,
            git=ShellGitContext(cwd=cwd, timeout_s=cfg.git_timeout_s),
        )

    def close(self) -> None:
        self.client.close()

    # Sessions and claims

    def session(
        self,
        action: str,
        session_id: str | None = None,
        summary: str | None = None,
        keys_read: Sequence[str] | None = None,
        keys_written: Sequence[str] | None = None,
        tools_used: Sequence[str] | None = None,
        limit: int | None = None,
        keys: Sequence[str] | None = None,
        exclude_session: str | None = None,
        ttl_minutes: int | None = None,
        auto_extract_git: bool | None = None,
    ) -> dict[str, Any]:
        if action not in SESSION_ACTIONS:
            return error_response("Unknown action", action)
        try:
            if action == "start":
                extract = (
                    self.config.auto_extract_git if auto_extract_git is None else auto_extract_git
                )
                return self.ledger.start(session_id, extract)
            if action == "end":
                return self.ledger.end(
                    session_id or self.ledger.active_session_id,
                    summary,
                    keys_read,
                    keys_written,
                    tools_used,
                )
            if action == "history":
                return self.ledger.history(limit or 10)
            if action == "claims_check":
                return self.claims.check(list(keys or []), exclude_session)
            if action == "claim":
                return self.claims.claim(
                    session_id or self.ledger.active_session_id or "",
                    list(keys or []),
                    ttl_minutes or self.config.claim_ttl_minutes,
                )
            return self.rate_limiter.status()
        except ValidationError as exc:
            return error_response("Missing param", exc)
        except RateLimitExceeded as exc:
            return error_response("Rate limit exceeded", exc)
        except Exception as exc:
            logger.warning("session.%s failed", action, exc_info=exc)
            return error_response(f"Error in session.{action}", exc)

    # Capacity and writes

    def memory_capacity(self) -> dict[str, Any]:
        try:
            view = CapacityView.from_api(self.client.get_memory_capacity())
        except Exception as exc:
            logger.warning("capacity lookup failed", exc_info=exc)
            return error_response("Error getting memory capacity", exc)
        return evaluate(view, self.config.capacity_warn_ratio).to_dict()

    def memory_store(
        self,
        key: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        tags: Sequence[str] | None = None,
        priority: int | None = None,
        expires_at: int | str | None = None,
        ttl: str | None = None,
    ) -> dict[str, Any]:
        if not key or not content:
            return error_response("Missing required params", "key and content are required")
        expiry = parse_timestamp(expires_at) if expires_at is not None else None
        if expires_at is not None and expiry is None:
            return error_response("Invalid param", f"expiresAt not understood: {expires_at!r}")
        if expiry is None and ttl and ttl != "permanent":
            if ttl not in TTL_PRESETS:
                return error_response("Invalid param", f"unknown ttl: {ttl}")
            expiry = utc_now() + TTL_PRESETS[ttl]

        rate = self.rate_limiter.check()
        if not rate.allowed:
            return error_response("Rate limit exceeded", rate.warning or "rate limit reached")

        try:
            admission = check_admission(
                self.client,
                key,
                expires_at=expiry,
                block_on_soft_full=self.config.block_on_soft_full,
                approaching_ratio=self.config.capacity_warn_ratio,
            )
            if not admission.admitted:
                return error_response("Capacity limit", admission.guidance or "memory limit reached")
            self.rate_limiter.increment()
            self.client.store_memory(
                key,
                content,
                metadata,
                tags=list(tags) if tags else None,
                priority=priority,
                expires_at=expiry,
            )
        except Exception as exc:
            if has_memory_full_error(exc):
                return error_response(
                    "Error storing memory",
                    f"{str(exc).rstrip('.')}. Use memory_delete or memory_archive to free space.",
                )
            logger.warning("memory store failed for %s", key, exc_info=exc)
            return error_response("Error storing memory", exc)

        notes = []
        decision = admission.decision
        if decision is not None and (decision.is_soft_full or decision.is_approaching):
            notes.append(format_capacity_guidance(decision))
        if rate.warning:
            notes.append(rate.warning)
        write_hint = self.rate_limiter.session_write_warning()
        if write_hint:
            notes.append(write_hint)
        message = " ".join([f"Memory stored with key: {key}.", *notes])
        return {"key": key, "created": admission.is_new, "message": message}

    def _charge_write(self) -> str | None:
        rate = self.rate_limiter.check()
        if not rate.allowed:
            raise RateLimitExceeded(rate.warning or "rate limit reached")
        self.rate_limiter.increment()
        return rate.warning

    def memory_delete(self, key: str) -> dict[str, Any]:
        if not key:
            return error_response("Missing required param", "key is required for delete")
        try:
            warning = self._charge_write()
            self.client.delete_memory(key)
        except RateLimitExceeded as exc:
            return error_response("Rate limit exceeded", exc)
        except Exception as exc:
            logger.warning("memory delete failed for %s", key, exc_info=exc)
            return error_response("Error deleting memory", exc)
        message = f"Memory deleted: {key}."
        return {
            "key": key,
            "deleted": True,
            "message": f"{message} {warning}" if warning else message,
        }

    def memory_archive(self, key: str, archive: bool = True) -> dict[str, Any]:
        if not key:
            return error_response("Missing required param", "key is required for archive")
        try:
            warning = self._charge_write()
            self.client.archive_memory(key, archive)
        except RateLimitExceeded as exc:
            return error_response("Rate limit exceeded", exc)
        except Exception as exc:
            logger.warning("memory archive failed for %s", key, exc_info=exc)
            return error_response("Error archiving memory", exc)
        message = f"Memory {'archived' if archive else 'unarchived'}: {key}."
        return {
            "key": key,
            "archived": archive,
            "message": f"{message} {warning}" if warning else message,
        }

    # Health

    def memory_health(self, limit: int = 50) -> dict[str, Any]:
        try:
            memories = self.client.list_all_memories()
        except Exception as exc:
            logger.warning("health listing failed", exc_info=exc)
            return error_response("Error computing health scores", exc)
        limit = min(max(1, limit), 200)
        return {"memories": rank_by_health(memories, utc_now(), limit)}

    def memory_hygiene(self) -> dict[str, Any]:
        try:
            memories = self.client.list_all_memories()
        except Exception as exc:
            logger.warning("hygiene listing failed", exc_info=exc)
            return error_response("Error building hygiene report", exc)
        return hygiene_report(memories, utc_now())

    def memory_suggest_cleanup(self, stale_days: int = 30, limit: int = 20) -> dict[str, Any]:
        try:
            memories = self.client.list_all_memories()
        except Exception as exc:
            logger.warning("cleanup listing failed", exc_info=exc)
            return error_response("Error suggesting cleanup", exc)
        return suggest_cleanup(memories, utc_now(), stale_days=stale_days, limit=limit)
