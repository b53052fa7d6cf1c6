from __future__ import annotations

import pytest

from memctl.api_client import ApiError
from memctl.config import MemctlConfig
from memctl.models import Memory
from memctl.rate_limit import RateLimiter
from memctl.tools import MemctlTools, error_response


@pytest.fixture
def tools(fake_api) -> MemctlTools:
    return MemctlTools(fake_api, config=MemctlConfig(auto_extract_git=False))


def test_error_response_includes_api_status() -> None:
    payload = error_response("Error in session.history", ApiError(502, "bad gateway"))

    assert payload == {
        "error": "Error in session.history: bad gateway",
        "is_error": True,
        "status": 502,
    }


def test_unknown_session_action_is_an_error(tools) -> None:
    result = tools.session("explode")

    assert result["is_error"] is True
    assert "explode" in result["error"]


def test_session_end_without_active_session_is_validation_error(tools) -> None:
    result = tools.session("end", summary="done")

    assert result["is_error"] is True
    assert result["error"].startswith("Missing param:")


def test_session_end_defaults_to_active_session(tools, fake_api) -> None:
    started = tools.session("start", session_id="s1")
    ended = tools.session("end", summary="Shipped")

    assert started["session_id"] == "s1"
    assert ended["session_id"] == "s1"
    assert fake_api.session_logs["s1"].summary == "Shipped"


def test_session_claim_and_check_round(tools) -> None:
    tools.session("start", session_id="s1")
    tools.session("claim", keys=["a/b"])

    other = tools.session("claims_check", keys=["a/b"], exclude_session="s2")
    own = tools.session("claims_check", keys=["a/b"], exclude_session="s1")

    assert other["conflicts"] == ["a/b"]
    assert own["conflicts"] == []


def test_session_claim_rate_limited(fake_api) -> None:
    tools = MemctlTools(fake_api, rate_limiter=RateLimiter(limit=1, write_call_count=1))

    result = tools.session("claim", session_id="s1", keys=["a/b"])

    assert result["error"].startswith("Rate limit exceeded: Rate limit reached (1/1).")


def test_session_history_wraps_store_errors(tools, fake_api) -> None:
    fake_api.fail_session_logs = True

    result = tools.session("history")

    assert result["is_error"] is True
    assert result["error"] == "Error in session.history: session logs unavailable"
    assert result["status"] == 500


def test_session_rate_status(tools) -> None:
    assert tools.session("rate_status")["status"] == "ok"


def test_memory_store_writes_and_counts(tools, fake_api) -> None:
    result = tools.memory_store("notes/a", "content", tags=["x"])

    assert result["created"] is True
    assert result["message"] == "Memory stored with key: notes/a."
    assert fake_api.memories["notes/a"].tags == ["x"]
    assert tools.rate_limiter.write_call_count == 1


def test_memory_store_validation_costs_nothing(tools, fake_api) -> None:
    result = tools.memory_store("", "content")

    assert result["is_error"] is True
    assert tools.rate_limiter.write_call_count == 0
    assert fake_api.stored == []


def test_memory_store_blocked_when_org_full(tools, fake_api) -> None:
    fake_api.capacity = {"used": 5, "limit": 50, "orgUsed": 1000, "orgLimit": 1000}

    result = tools.memory_store("notes/new", "content")

    assert result["is_error"] is True
    assert "Organization memory limit reached" in result["error"]
    assert tools.rate_limiter.write_call_count == 0


def test_memory_store_update_allowed_when_full(tools, fake_api) -> None:
    fake_api.add_memory(Memory(key="notes/a", content="old"))
    fake_api.capacity = {"used": 1000, "limit": 1000, "orgUsed": 1000, "orgLimit": 1000}

    result = tools.memory_store("notes/a", "new")

    assert result["created"] is False
    assert fake_api.memories["notes/a"].content == "new"


def test_memory_store_ttl_preset_bypasses_capacity(tools, fake_api) -> None:
    fake_api.capacity = {"used": 1000, "limit": 1000, "orgUsed": 1000, "orgLimit": 1000}

    result = tools.memory_store("notes/tmp", "scratch", ttl="session")

    assert "is_error" not in result
    assert fake_api.memories["notes/tmp"].expires_at is not None


def test_memory_store_soft_full_message_carries_guidance(tools, fake_api) -> None:
    fake_api.capacity = {"used": 50, "limit": 50, "orgUsed": 300, "orgLimit": 1000}

    result = tools.memory_store("notes/b", "content")

    assert "Project soft limit reached (50/50)" in result["message"]


def test_memory_store_server_quota_rejection_gets_hint(tools, fake_api) -> None:
    fake_api.fail_store = ApiError(403, "Memory limit reached")

    result = tools.memory_store("notes/c", "content")

    assert result["is_error"] is True
    assert result["error"].endswith("Use memory_delete or memory_archive to free space.")


def test_memory_capacity_returns_flags_and_guidance(tools, fake_api) -> None:
    fake_api.capacity = {"used": 50, "limit": 50, "orgUsed": 300, "orgLimit": 1000}

    result = tools.memory_capacity()

    assert result["is_soft_full"] is True
    assert result["is_full"] is False
    assert result["guidance"].startswith("Project soft limit reached")


def test_hygiene_and_cleanup_read_all_memories(tools, fake_api) -> None:
    fake_api.add_memory(Memory(key="notes/a"))

    assert tools.memory_hygiene()["capacity"]["used"] == 1
    assert tools.memory_suggest_cleanup()["stale_days_threshold"] == 30
    assert [item["key"] for item in tools.memory_health()["memories"]] == ["notes/a"]


def test_memory_delete_removes_key_and_counts_write(tools, fake_api) -> None:
    fake_api.add_memory(Memory(key="notes/old", content="x"))

    result = tools.memory_delete("notes/old")

    assert result == {"key": "notes/old", "deleted": True, "message": "Memory deleted: notes/old."}
    assert "notes/old" not in fake_api.memories
    assert tools.rate_limiter.write_call_count == 1


def test_memory_delete_missing_key_reports_status(tools) -> None:
    result = tools.memory_delete("notes/none")

    assert result["is_error"] is True
    assert result["status"] == 404


def test_memory_delete_requires_key(tools) -> None:
    result = tools.memory_delete("")

    assert result["error"].startswith("Missing required param:")
    assert tools.rate_limiter.write_call_count == 0


def test_memory_archive_and_restore(tools, fake_api) -> None:
    fake_api.add_memory(Memory(key="notes/a", content="x"))

    archived = tools.memory_archive("notes/a")
    assert archived["archived"] is True
    assert fake_api.memories["notes/a"].is_archived

    restored = tools.memory_archive("notes/a", archive=False)
    assert restored["message"] == "Memory unarchived: notes/a."
    assert not fake_api.memories["notes/a"].is_archived


def test_memory_archive_rate_limited(fake_api) -> None:
    fake_api.add_memory(Memory(key="notes/a", content="x"))
    tools = MemctlTools(fake_api, rate_limiter=RateLimiter(limit=1, write_call_count=1))

    result = tools.memory_archive("notes/a")

    assert result["error"].startswith("Rate limit exceeded:")
    assert not fake_api.memories["notes/a"].is_archived
