from __future__ import annotations

import datetime as dt

import pytest

from memctl.errors import ValidationError
from memctl.git_context import NullGitContext, TodoMarker
from memctl.models import SessionLog
from memctl.sessions import SessionLedger, git_context_key, git_todos_key
from memctl.utils import to_iso, utc_now


class _FakeGit(NullGitContext):
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.since: dt.datetime | None = None

    def current_branch(self) -> str | None:
        return "feature/claims"

    def recent_commits(self, since=None, limit=20) -> list[str]:
        if self.fail:
            raise RuntimeError("git exploded")
        self.since = since
        return ["abc123 Add claim registry"]

    def touched_files(self, depth=5) -> list[str]:
        return ["memctl/claims.py"]

    def find_todo_markers(self, files, max_files=20, max_per_file=5) -> list[TodoMarker]:
        return [TodoMarker("memctl/claims.py", 12, "TODO: handle renames")]


def test_start_without_prior_sessions_has_no_handoff(fake_api) -> None:
    ledger = SessionLedger(fake_api)

    result = ledger.start("s1")

    assert result["handoff"] is None
    assert result["session_id"] == "s1"
    assert result["generated_session_id"] is False
    assert ledger.active_session_id == "s1"
    assert "s1" in fake_api.session_logs


def test_start_generates_session_id(fake_api) -> None:
    result = SessionLedger(fake_api).start()

    assert result["generated_session_id"] is True
    assert result["session_id"].startswith("sess-")


def test_start_hands_off_previous_session(fake_api) -> None:
    ended = utc_now() - dt.timedelta(hours=1)
    fake_api.add_session(
        SessionLog(
            session_id="prev",
            summary="Wired capacity checks",
            keys_written=["notes/capacity"],
            started_at=ended - dt.timedelta(minutes=30),
            ended_at=ended,
        )
    )

    result = SessionLedger(fake_api).start("next", auto_extract_git=False)

    assert result["handoff"]["previous_session_id"] == "prev"
    assert result["handoff"]["summary"] == "Wired capacity checks"
    assert result["handoff"]["keys_written"] == ["notes/capacity"]


def test_start_closes_stale_open_sessions(fake_api) -> None:
    now = utc_now()
    fake_api.add_session(SessionLog(session_id="stuck", started_at=now - dt.timedelta(hours=3)))
    fake_api.add_session(SessionLog(session_id="busy", started_at=now - dt.timedelta(minutes=5)))

    result = SessionLedger(fake_api).start("s1", auto_extract_git=False, now=now)

    assert result["stale_sessions_closed"] == 1
    assert fake_api.session_logs["stuck"].ended_at == now
    assert fake_api.session_logs["busy"].ended_at is None


def test_start_tolerates_session_log_failure(fake_api) -> None:
    fake_api.fail_session_logs = True

    result = SessionLedger(fake_api).start("s1", auto_extract_git=False)

    assert result["handoff"] is None
    assert result["recent_session_count"] == 0


def test_start_persists_git_context(fake_api) -> None:
    git = _FakeGit()

    result = SessionLedger(fake_api, git).start("s1")

    assert result["current_branch"] == "feature/claims"
    assert result["git_context"]["stored_keys"] == [git_context_key("s1"), git_todos_key("s1")]
    context = fake_api.memories[git_context_key("s1")]
    assert "abc123 Add claim registry" in context.content
    assert "auto:git" in context.tags
    assert context.expires_at is not None
    assert "TODO: handle renames" in fake_api.memories[git_todos_key("s1")].content


def test_git_failure_does_not_fail_start(fake_api) -> None:
    result = SessionLedger(fake_api, _FakeGit(fail=True)).start("s1")

    assert result["session_id"] == "s1"
    # Commits failed but TODO markers were still collected.
    assert result["git_context"]["commits"] == 0
    assert git_todos_key("s1") in fake_api.memories


def test_end_requires_session_id_and_summary(fake_api) -> None:
    ledger = SessionLedger(fake_api)

    with pytest.raises(ValidationError, match="sessionId"):
        ledger.end(None, "done")
    with pytest.raises(ValidationError, match="summary"):
        ledger.end("s1", "   ")


def test_end_records_summary_and_clears_active_session(fake_api) -> None:
    ledger = SessionLedger(fake_api)
    ledger.start("s1", auto_extract_git=False)

    result = ledger.end("s1", " Finished claims ", keys_written=["a/b"])

    log = fake_api.session_logs["s1"]
    assert log.summary == "Finished claims"
    assert log.keys_written == ["a/b"]
    assert log.ended_at is not None
    assert ledger.active_session_id is None
    assert result["message"] == "Session s1 ended. Handoff summary saved."


def test_history_clamps_limit(fake_api) -> None:
    for i in range(3):
        fake_api.add_session(SessionLog(session_id=f"s{i}", started_at=utc_now()))

    result = SessionLedger(fake_api).history(limit=0)

    assert len(result["sessions"]) == 1


def test_close_active_marks_session_ended(fake_api) -> None:
    ledger = SessionLedger(fake_api)
    ledger.start("s1", auto_extract_git=False)

    ledger.close_active("Auto-closed: test exit.")

    assert fake_api.session_logs["s1"].summary == "Auto-closed: test exit."
    assert ledger.active_session_id is None


def test_handoff_reflects_session_closed_during_start(fake_api) -> None:
    now = utc_now()
    fake_api.add_session(SessionLog(session_id="stuck", started_at=now - dt.timedelta(hours=3)))

    result = SessionLedger(fake_api).start("s1", auto_extract_git=False, now=now)

    handoff = result["handoff"]
    assert handoff["previous_session_id"] == "stuck"
    assert handoff["ended_at"] == to_iso(now)
    assert handoff["summary"] == "Auto-closed: session exceeded inactivity limit."


def test_git_window_for_stale_session_is_not_the_close_time(fake_api) -> None:
    now = utc_now()
    fake_api.add_session(SessionLog(session_id="stuck", started_at=now - dt.timedelta(hours=3)))
    git = _FakeGit()

    SessionLedger(fake_api, git).start("s1", now=now)

    assert git.since is None
