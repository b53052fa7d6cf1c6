from __future__ import annotations

import datetime as dt
import json
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from .errors import RateLimitExceeded, ValidationError
from .models import Claim, Memory
from .utils import to_iso, utc_now

if TYPE_CHECKING:
    from .api_client import MemoryApiClient
    from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

CLAIM_PREFIX = "agent/claims/"
CLAIM_TAG = "session-claim"
CLAIM_VERSION = 1
DEFAULT_TTL_MINUTES = 30
CLAIM_SCAN_LIMIT = 100


class ClaimDecodeError(ValueError):
    pass


def claim_key(session_id: str) -> str:
    return f"{CLAIM_PREFIX}{session_id}"


def encode_claim_content(keys: Sequence[str]) -> str:
    return json.dumps({"version": CLAIM_VERSION, "keys": list(keys)})


def decode_claim_content(content: str) -> list[str]:
    """Return the claimed keys; bare JSON arrays from older writers are accepted."""

    try:
        data = json.loads(content)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ClaimDecodeError("claim content is not json") from exc
    if isinstance(data, dict):
        version = data.get("version")
        if version != CLAIM_VERSION:
            raise ClaimDecodeError(f"unsupported claim version: {version!r}")
        data = data.get("keys")
    if not isinstance(data, list):
        raise ClaimDecodeError("claim keys must be a list")
    if not all(isinstance(item, str) for item in data):
        raise ClaimDecodeError("claim keys must be strings")
    return data


def claim_from_memory(memory: Memory) -> Claim:
    if not memory.key.startswith(CLAIM_PREFIX):
        raise ClaimDecodeError(f"not a claim key: {memory.key}")
    session_id = memory.key[len(CLAIM_PREFIX) :]
    if not session_id:
        raise ClaimDecodeError("claim key has no session id")
    if memory.expires_at is None:
        raise ClaimDecodeError("claim has no expiry")
    return Claim(
        session_id=session_id,
        claimed_keys=decode_claim_content(memory.content),
        expires_at=memory.expires_at,
    )


class ClaimRegistry:
    """Advisory, TTL-bound declarations of which keys a session intends to touch.

    Claims are ordinary memories under ``agent/claims/``; nothing here locks or
    blocks. Two sessions can claim the same keys and both succeed.
    """

    def __init__(self, client: MemoryApiClient, rate_limiter: RateLimiter) -> None:
        self.client = client
        self.rate_limiter = rate_limiter

    def claim(
        self,
        session_id: str,
        keys: Sequence[str],
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        *,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        if not session_id:
            raise ValidationError("sessionId required")
        if not keys:
            raise ValidationError("keys required")
        if ttl_minutes <= 0:
            raise ValidationError("ttlMinutes must be positive")
        rate = self.rate_limiter.check()
        if not rate.allowed:
            raise RateLimitExceeded(rate.warning or "rate limit reached")
        self.rate_limiter.increment()

        now = now or utc_now()
        expires_at = now + dt.timedelta(minutes=ttl_minutes)
        key = claim_key(session_id)
        self.client.store_memory(
            key,
            encode_claim_content(keys),
            {"sessionId": session_id, "claimedAt": to_iso(now)},
            tags=[CLAIM_TAG],
            priority=0,
            expires_at=expires_at,
        )
        message = f"Claimed {len(keys)} key(s)."
        if rate.warning:
            message = f"{message} {rate.warning}"
        return {
            "session_id": session_id,
            "claim_key": key,
            "keys": list(keys),
            "expires_at": to_iso(expires_at),
            "ttl_minutes": ttl_minutes,
            "message": message,
        }

    def active_claims(
        self, *, exclude_session_id: str | None = None, now: dt.datetime | None = None
    ) -> list[Claim]:
        now = now or utc_now()
        memories = self.client.search_memories(
            prefix=CLAIM_PREFIX, limit=CLAIM_SCAN_LIMIT, tags=CLAIM_TAG
        )
        claims: list[Claim] = []
        for memory in memories:
            # Search may match loosely; only tagged records under the reserved prefix count.
            if not memory.key.startswith(CLAIM_PREFIX) or CLAIM_TAG not in memory.tags:
                continue
            try:
                claim = claim_from_memory(memory)
            except ClaimDecodeError as exc:
                logger.warning("skipping malformed claim %s: %s", memory.key, exc)
                continue
            if not claim.is_active(now):
                continue
            if exclude_session_id and claim.session_id == exclude_session_id:
                continue
            claims.append(claim)
        return claims

    def check(
        self,
        keys: Sequence[str],
        exclude_session_id: str | None = None,
        *,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        if not keys:
            raise ValidationError("keys required")
        wanted = set(keys)
        claims = self.active_claims(exclude_session_id=exclude_session_id, now=now)

        conflicts: list[str] = []
        details: list[dict[str, Any]] = []
        for claim in claims:
            overlap = claim.conflicts_with(wanted)
            if not overlap:
                continue
            details.append(
                {
                    "session_id": claim.session_id,
                    "claimed_keys": claim.claimed_keys,
                    "expires_at": to_iso(claim.expires_at),
                    "conflicts": overlap,
                }
            )
            for key in overlap:
                if key not in conflicts:
                    conflicts.append(key)

        return {
            "checked_keys": list(keys),
            "active_sessions": len(claims),
            "conflicts": conflicts,
            "details": details,
            "hint": (
                f"{len(conflicts)} key(s) claimed by other sessions."
                if conflicts
                else "No conflicts found."
            ),
        }
