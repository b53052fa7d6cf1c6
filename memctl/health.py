"""Health scoring and hygiene reporting for stored memories.

A memory's health is the sum of four factors, each worth at most 25 points:

    age        max(0, 25 - age_days / 14)
    access     min(25, access_count * 2.5)
    feedback   12.5 + clamp(-12.5, 12.5, (helpful - unhelpful) * 2.5)
    freshness  max(0, 25 - days_since_access / 7), 0 when never accessed

Everything here is read-only and works on whatever list of memories the caller
fetched, so it is safe to run repeatedly.
"""

from __future__ import annotations

import datetime as dt
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .models import Memory
from .utils import to_iso

FACTOR_CAP = 25.0
NEUTRAL_FEEDBACK = 12.5

STALE_DAYS = 30
EXPIRING_DAYS = 7
REPORT_LIST_CAP = 50
GROWTH_WEEKS = 12

BUCKETS = ("critical", "low", "medium", "healthy")

_DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class HealthScore:
    total: float
    age: float
    access: float
    feedback: float
    freshness: float

    @property
    def bucket(self) -> str:
        return bucket(self.total)

    def factors(self) -> dict[str, float]:
        return {
            "age": round(self.age, 2),
            "access": round(self.access, 2),
            "feedback": round(self.feedback, 2),
            "freshness": round(self.freshness, 2),
        }


def _days_between(earlier: dt.datetime, now: dt.datetime) -> float:
    return max(0.0, (now - earlier).total_seconds() / _DAY_SECONDS)


def score(memory: Memory, now: dt.datetime) -> HealthScore:
    age_days = _days_between(memory.created_at, now) if memory.created_at else 0.0
    age = max(0.0, FACTOR_CAP - age_days / 14)

    access = min(FACTOR_CAP, max(0, memory.access_count) * 2.5)

    net = (memory.helpful_count - memory.unhelpful_count) * 2.5
    feedback = NEUTRAL_FEEDBACK + min(NEUTRAL_FEEDBACK, max(-NEUTRAL_FEEDBACK, net))

    if memory.last_accessed_at is None:
        freshness = 0.0
    else:
        since_access = _days_between(memory.last_accessed_at, now)
        freshness = max(0.0, FACTOR_CAP - since_access / 7)

    return HealthScore(
        total=age + access + feedback + freshness,
        age=age,
        access=access,
        feedback=feedback,
        freshness=freshness,
    )


def bucket(total: float) -> str:
    if total < 25:
        return "critical"
    if total < 50:
        return "low"
    if total < 75:
        return "medium"
    return "healthy"


def active_memories(memories: Iterable[Memory]) -> list[Memory]:
    return [memory for memory in memories if not memory.is_archived]


def _updated_desc(memories: list[Memory]) -> list[Memory]:
    floor = dt.datetime.min.replace(tzinfo=dt.UTC)
    return sorted(
        memories,
        key=lambda m: m.updated_at or m.created_at or floor,
        reverse=True,
    )


def is_stale(memory: Memory, now: dt.datetime, stale_days: int = STALE_DAYS) -> bool:
    if memory.is_pinned:
        return False
    if memory.last_accessed_at is None:
        return True
    return memory.last_accessed_at < now - dt.timedelta(days=stale_days)


def is_expiring_soon(memory: Memory, now: dt.datetime, window_days: int = EXPIRING_DAYS) -> bool:
    if memory.expires_at is None:
        return False
    return now < memory.expires_at <= now + dt.timedelta(days=window_days)


def week_start(value: dt.datetime) -> dt.date:
    day = value.astimezone(dt.UTC).date()
    return day - dt.timedelta(days=(day.weekday() + 1) % 7)


def weekly_growth(memories: Iterable[Memory], weeks: int = GROWTH_WEEKS) -> list[dict[str, Any]]:
    counts = Counter(week_start(m.created_at) for m in memories if m.created_at)
    recent = sorted(counts.items())[-weeks:] if weeks > 0 else []
    return [{"week": week.isoformat(), "count": count} for week, count in recent]


def hygiene_report(
    memories: Iterable[Memory],
    now: dt.datetime,
    *,
    stale_days: int = STALE_DAYS,
    expiring_days: int = EXPIRING_DAYS,
    cap: int = REPORT_LIST_CAP,
    growth_weeks: int = GROWTH_WEEKS,
) -> dict[str, Any]:
    active = _updated_desc(active_memories(memories))
    buckets = dict.fromkeys(BUCKETS, 0)
    stale: list[dict[str, Any]] = []
    expiring: list[dict[str, Any]] = []

    for memory in active:
        buckets[score(memory, now).bucket] += 1
        if len(stale) < cap and is_stale(memory, now, stale_days):
            stale.append(
                {
                    "key": memory.key,
                    "last_accessed_at": to_iso(memory.last_accessed_at),
                    "priority": memory.priority,
                }
            )
        if len(expiring) < cap and is_expiring_soon(memory, now, expiring_days):
            expiring.append({"key": memory.key, "expires_at": to_iso(memory.expires_at)})

    return {
        "health_buckets": buckets,
        "stale_memories": stale,
        "expiring_memories": expiring,
        "growth": weekly_growth(active, growth_weeks),
        "capacity": {"used": len(active)},
    }


def rank_by_health(
    memories: Iterable[Memory], now: dt.datetime, limit: int = 50
) -> list[dict[str, Any]]:
    """Score active memories, worst first, for maintenance tooling."""

    scored = []
    for memory in active_memories(memories):
        result = score(memory, now)
        scored.append(
            {
                "key": memory.key,
                "health_score": round(result.total, 2),
                "bucket": result.bucket,
                "factors": result.factors(),
                "priority": memory.priority,
                "access_count": memory.access_count,
                "last_accessed_at": to_iso(memory.last_accessed_at),
                "is_pinned": memory.is_pinned,
            }
        )
    scored.sort(key=lambda item: item["health_score"])
    return scored[: max(0, limit)]


def suggest_cleanup(
    memories: Iterable[Memory],
    now: dt.datetime,
    *,
    stale_days: int = STALE_DAYS,
    limit: int = 20,
) -> dict[str, Any]:
    limit = min(max(1, limit), 50)
    cutoff = now - dt.timedelta(days=stale_days)
    floor = dt.datetime.min.replace(tzinfo=dt.UTC)
    active = active_memories(memories)

    stale = [
        m
        for m in active
        if not m.is_pinned and (m.updated_at or m.created_at or floor) < cutoff
    ]
    stale.sort(key=lambda m: (m.access_count, m.last_accessed_at or floor))
    expired = [m for m in active if m.is_expired(now)]

    return {
        "stale": [
            {
                "key": m.key,
                "access_count": m.access_count,
                "last_accessed_at": to_iso(m.last_accessed_at),
                "updated_at": to_iso(m.updated_at),
                "priority": m.priority,
                "reason": f"Not updated in {stale_days} days, low access count",
            }
            for m in stale[:limit]
        ],
        "expired": [
            {"key": m.key, "expires_at": to_iso(m.expires_at), "reason": "Past expiration date"}
            for m in expired[:limit]
        ],
        "stale_days_threshold": stale_days,
    }
