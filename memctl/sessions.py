from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from .errors import ValidationError
from .git_context import GitContextSource, NullGitContext, extract_git_context
from .models import SessionLog
from .utils import generate_session_id, to_iso, utc_now

if TYPE_CHECKING:
    from .api_client import MemoryApiClient

logger = logging.getLogger(__name__)

HANDOFF_LOOKBACK = 5
HISTORY_MAX = 50
STALE_SESSION_HOURS = 2
GIT_CONTEXT_TTL = dt.timedelta(days=7)
GIT_TODOS_TTL = dt.timedelta(days=14)
GIT_TAG = "auto:git"


def git_context_key(session_id: str) -> str:
    return f"agent/git/{session_id}/context"


def git_todos_key(session_id: str) -> str:
    return f"agent/git/{session_id}/todos"


def session_to_dict(log: SessionLog) -> dict[str, Any]:
    return {
        "session_id": log.session_id,
        "branch": log.branch,
        "summary": log.summary,
        "keys_read": log.keys_read,
        "keys_written": log.keys_written,
        "tools_used": log.tools_used,
        "started_at": to_iso(log.started_at),
        "ended_at": to_iso(log.ended_at),
    }


def newest_first(logs: Sequence[SessionLog]) -> list[SessionLog]:
    floor = dt.datetime.min.replace(tzinfo=dt.UTC)
    return sorted(logs, key=lambda log: log.started_at or log.ended_at or floor, reverse=True)


def build_handoff(previous: SessionLog | None) -> dict[str, Any] | None:
    if previous is None:
        return None
    return {
        "previous_session_id": previous.session_id,
        "summary": previous.summary,
        "branch": previous.branch,
        "keys_written": previous.keys_written,
        "ended_at": to_iso(previous.ended_at),
    }


class SessionLedger:
    """Records session start/end and hands context from one session to the next."""

    def __init__(
        self,
        client: MemoryApiClient,
        git: GitContextSource | None = None,
        *,
        stale_after_hours: int = STALE_SESSION_HOURS,
    ) -> None:
        self.client = client
        self.git = git or NullGitContext()
        self.stale_after = dt.timedelta(hours=stale_after_hours)
        self.active_session_id: str | None = None

    def _current_branch(self) -> str | None:
        try:
            return self.git.current_branch()
        except Exception as exc:
            logger.debug("git branch lookup failed", exc_info=exc)
            return None

    def _recent_sessions(self) -> list[SessionLog]:
        try:
            return newest_first(self.client.get_session_logs(HANDOFF_LOOKBACK))
        except Exception as exc:
            logger.warning("session log lookup failed", exc_info=exc)
            return []

    def _close_stale(self, sessions: Sequence[SessionLog], now: dt.datetime) -> int:
        closed = 0
        for log in sessions:
            if not log.is_active or log.started_at is None:
                continue
            if now - log.started_at < self.stale_after:
                continue
            summary = log.summary or "Auto-closed: session exceeded inactivity limit."
            try:
                self.client.upsert_session_log(log.session_id, summary=summary, ended_at=now)
            except Exception as exc:
                logger.debug("auto-close of %s failed", log.session_id, exc_info=exc)
                continue
            # Mirror the close locally for the handoff.
            log.summary = summary
            log.ended_at = now
            closed += 1
        return closed

    def _persist_git_context(
        self, session_id: str, since: dt.datetime | None, now: dt.datetime
    ) -> dict[str, Any] | None:
        try:
            context = extract_git_context(self.git, since)
        except Exception as exc:
            logger.warning("git context extraction failed", exc_info=exc)
            return None

        stored: list[str] = []
        metadata = {"sessionId": session_id, "source": "git", "extractedAt": to_iso(now)}
        if context.has_activity:
            try:
                self.client.store_memory(
                    git_context_key(session_id),
                    context.render_activity(),
                    metadata,
                    tags=[GIT_TAG, "session-context"],
                    expires_at=now + GIT_CONTEXT_TTL,
                )
                stored.append(git_context_key(session_id))
            except Exception as exc:
                logger.warning("storing git session context failed", exc_info=exc)
        if context.todos:
            try:
                self.client.store_memory(
                    git_todos_key(session_id),
                    context.render_todos(),
                    metadata,
                    tags=[GIT_TAG, "todos"],
                    expires_at=now + GIT_TODOS_TTL,
                )
                stored.append(git_todos_key(session_id))
            except Exception as exc:
                logger.warning("storing git todos failed", exc_info=exc)
        if not stored:
            return None
        return {
            "commits": len(context.commits),
            "todos": len(context.todos),
            "stored_keys": stored,
        }

    def start(
        self,
        session_id: str | None = None,
        auto_extract_git: bool = True,
        *,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        now = now or utc_now()
        generated = not session_id
        session_id = session_id or generate_session_id(now)
        branch = self._current_branch()
        recent = self._recent_sessions()

        self.client.upsert_session_log(session_id, branch=branch)
        self.active_session_id = session_id

        previous = [log for log in recent if log.session_id != session_id]
        last = previous[0] if previous else None
        since = last.ended_at if last else None
        stale_closed = self._close_stale(previous, now)

        git_context = None
        if auto_extract_git:
            git_context = self._persist_git_context(session_id, since, now)

        return {
            "session_id": session_id,
            "generated_session_id": generated,
            "current_branch": branch,
            "handoff": build_handoff(last),
            "recent_session_count": len(recent),
            "stale_sessions_closed": stale_closed,
            "git_context": git_context,
        }

    def end(
        self,
        session_id: str | None,
        summary: str | None,
        keys_read: Sequence[str] | None = None,
        keys_written: Sequence[str] | None = None,
        tools_used: Sequence[str] | None = None,
        *,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        if not session_id:
            raise ValidationError("sessionId required")
        if not summary or not summary.strip():
            raise ValidationError("summary required")
        now = now or utc_now()
        self.client.upsert_session_log(
            session_id,
            summary=summary.strip(),
            keys_read=list(keys_read or []),
            keys_written=list(keys_written or []),
            tools_used=list(tools_used or []),
            ended_at=now,
        )
        if self.active_session_id == session_id:
            self.active_session_id = None
        return {
            "session_id": session_id,
            "ended_at": to_iso(now),
            "message": f"Session {session_id} ended. Handoff summary saved.",
        }

    def history(self, limit: int = 10) -> dict[str, Any]:
        limit = min(max(1, limit), HISTORY_MAX)
        logs = newest_first(self.client.get_session_logs(limit))
        return {"sessions": [session_to_dict(log) for log in logs[:limit]]}

    def close_active(self, reason: str = "Auto-closed: process exited.") -> None:
        if not self.active_session_id:
            return
        session_id = self.active_session_id
        self.active_session_id = None
        try:
            self.client.upsert_session_log(session_id, summary=reason, ended_at=utc_now())
        except Exception as exc:
            logger.debug("auto-close of %s failed", session_id, exc_info=exc)
