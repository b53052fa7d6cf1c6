from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DEFAULT_RATE_LIMIT = 500
WARNING_RATIO = 0.8
SESSION_WRITE_HINT_THRESHOLD = 15


@dataclass(frozen=True)
class RateCheck:
    allowed: bool
    warning: str | None = None


class RateLimiter:
    """Counts write-class calls for the lifetime of one session process.

    There is no reset: the owning process is the reset boundary. ``check`` never
    mutates; callers ``increment`` once they know the write will go ahead.
    """

    def __init__(self, limit: int = DEFAULT_RATE_LIMIT, write_call_count: int = 0) -> None:
        if limit <= 0:
            raise ValueError("rate limit must be positive")
        self.limit = limit
        self.write_call_count = write_call_count

    def check(self) -> RateCheck:
        ratio = self.write_call_count / self.limit
        if self.write_call_count >= self.limit:
            return RateCheck(
                allowed=False,
                warning=(
                    f"Rate limit reached ({self.write_call_count}/{self.limit}). "
                    "No more write operations allowed this session."
                ),
            )
        if ratio >= WARNING_RATIO:
            return RateCheck(
                allowed=True,
                warning=(
                    f"Approaching rate limit: {self.write_call_count}/{self.limit} "
                    f"write calls used ({round(ratio * 100)}%)."
                ),
            )
        return RateCheck(allowed=True)

    def increment(self) -> None:
        self.write_call_count += 1

    def session_write_warning(self) -> str | None:
        if self.write_call_count >= SESSION_WRITE_HINT_THRESHOLD:
            return (
                f"Note: {self.write_call_count} writes this session. Consider consolidating "
                "related memories to reduce write volume."
            )
        return None

    def status(self) -> dict[str, Any]:
        ratio = self.write_call_count / self.limit
        if ratio >= 1:
            state = "blocked"
        elif ratio >= WARNING_RATIO:
            state = "warning"
        else:
            state = "ok"
        return {
            "calls_made": self.write_call_count,
            "limit": self.limit,
            "remaining": max(0, self.limit - self.write_call_count),
            "percentage_used": round(ratio * 100),
            "status": state,
        }
