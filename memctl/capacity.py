from __future__ import annotations

import datetime as dt
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .api_client import MemoryApiClient

DEFAULT_APPROACHING_RATIO = 0.8

_MEMORY_FULL_RE = re.compile(r"memory limit reached", re.IGNORECASE)


def _as_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0
    if isinstance(value, (int, float)) and math.isfinite(value):
        return max(0, int(value))
    return 0


def _as_limit(value: Any) -> float:
    # The API serializes unlimited plans as null.
    if value is None or isinstance(value, bool):
        return math.inf
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return math.inf
    return math.inf


def usage_ratio(used: int, limit: float) -> float:
    if math.isinf(limit):
        return 0.0
    if limit <= 0:
        return 1.0
    return used / limit


def limit_text(limit: float) -> str:
    return "unlimited" if math.isinf(limit) else str(int(limit))


@dataclass(frozen=True)
class CapacityView:
    project_used: int
    project_limit: float
    org_used: int
    org_limit: float

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> CapacityView:
        project_used = _as_count(payload.get("used"))
        project_limit = _as_limit(payload.get("limit"))
        org_used = (
            _as_count(payload.get("orgUsed")) if "orgUsed" in payload else project_used
        )
        org_limit = _as_limit(payload.get("orgLimit")) if "orgLimit" in payload else project_limit
        return cls(project_used, project_limit, org_used, org_limit)


@dataclass(frozen=True)
class CapacityDecision:
    view: CapacityView
    project_ratio: float
    org_ratio: float
    is_full: bool
    is_soft_full: bool
    is_approaching: bool

    def admits_new_memory(self, *, expiring: bool = False, block_on_soft_full: bool = False) -> bool:
        if expiring:
            return True
        if self.is_full:
            return False
        if self.is_soft_full and block_on_soft_full:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        view = self.view
        return {
            "used": view.project_used,
            "limit": None if math.isinf(view.project_limit) else int(view.project_limit),
            "org_used": view.org_used,
            "org_limit": None if math.isinf(view.org_limit) else int(view.org_limit),
            "usage_ratio": round(min(1.0, self.project_ratio), 4),
            "org_usage_ratio": round(min(1.0, self.org_ratio), 4),
            "is_full": self.is_full,
            "is_soft_full": self.is_soft_full,
            "is_approaching": self.is_approaching,
            "guidance": format_capacity_guidance(self),
        }


def evaluate(
    view: CapacityView, approaching_ratio: float = DEFAULT_APPROACHING_RATIO
) -> CapacityDecision:
    project_ratio = usage_ratio(view.project_used, view.project_limit)
    org_ratio = usage_ratio(view.org_used, view.org_limit)
    is_full = org_ratio >= 1
    is_soft_full = not is_full and project_ratio >= 1
    is_approaching = (
        not is_full
        and not is_soft_full
        and max(project_ratio, org_ratio) >= approaching_ratio
    )
    return CapacityDecision(
        view=view,
        project_ratio=project_ratio,
        org_ratio=org_ratio,
        is_full=is_full,
        is_soft_full=is_soft_full,
        is_approaching=is_approaching,
    )


def format_capacity_guidance(decision: CapacityDecision) -> str:
    view = decision.view
    project = f"{view.project_used}/{limit_text(view.project_limit)}"
    org = f"{view.org_used}/{limit_text(view.org_limit)}"
    if decision.is_full:
        return (
            f"Organization memory limit reached ({org}). Delete or archive unused memories "
            f"before storing new ones. Project: {project}."
        )
    if decision.is_soft_full:
        return (
            f"Project soft limit reached ({project}). Consider archiving old memories. "
            f"Org: {org}."
        )
    if decision.is_approaching:
        return f"Approaching memory limit. Project: {project}, Org: {org}."
    return f"Memory available. Project: {project}, Org: {org}."


def has_memory_full_error(error: BaseException | str) -> bool:
    return bool(_MEMORY_FULL_RE.search(str(error)))


@dataclass(frozen=True)
class Admission:
    admitted: bool
    is_new: bool
    decision: CapacityDecision | None = None

    @property
    def guidance(self) -> str | None:
        return format_capacity_guidance(self.decision) if self.decision else None


def check_admission(
    client: MemoryApiClient,
    key: str,
    *,
    expires_at: dt.datetime | None = None,
    block_on_soft_full: bool = False,
    approaching_ratio: float = DEFAULT_APPROACHING_RATIO,
) -> Admission:
    """Decide whether a write to ``key`` may proceed given live quota counts.

    Updates to existing keys never consume quota. Counts are fetched fresh on each
    call and no lock is held, so concurrent writers may overshoot slightly.
    """

    if client.find_memory(key) is not None:
        return Admission(admitted=True, is_new=False)
    decision = evaluate(CapacityView.from_api(client.get_memory_capacity()), approaching_ratio)
    admitted = decision.admits_new_memory(
        expiring=expires_at is not None, block_on_soft_full=block_on_soft_full
    )
    return Admission(admitted=admitted, is_new=True, decision=decision)
