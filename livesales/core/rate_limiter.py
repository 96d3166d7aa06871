"""
Response rate limiting and platform quota accounting.

Three independent gates must all pass before an auto-reply is sent:
  - per user (session id + username): response cap and minimum delay
  - per session: total auto-reply cap
  - per platform pool: YouTube daily quota units, Twitch daily whispers

Platform pools are shared by every session in the process, so the
check-and-reserve step is serialized by a lock. The lock only ever guards
in-memory arithmetic, never an await.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..models.session import RateLimitOverrides
from .config import DAY_SECONDS, RateLimitConfig

logger = logging.getLogger("RateLimiter")

# YouTube Data API costs
YOUTUBE_LIST_COST = 5
YOUTUBE_INSERT_COST = 50
YOUTUBE_VIDEOS_LIST_COST = 1


class Gate(str, Enum):
    USER = "user"
    SESSION = "session"
    PLATFORM = "platform"


class QuotaPool(str, Enum):
    YOUTUBE = "youtube"
    TWITCH_WHISPER = "twitch_whisper"


@dataclass
class UserRateLimit:
    response_count: int = 0
    last_response_time: float = 0.0
    first_response_time: float = 0.0


@dataclass
class DailyQuota:
    """Consumable pool replenished on a rolling 24h window.

    ``reserved`` holds units promised to in-flight sends; they count against
    the pool but are only moved into ``used`` once the send succeeds.
    """

    used: int = 0
    reserved: int = 0
    reset_at: float = 0.0

    def used_at(self, now: float) -> int:
        return 0 if now >= self.reset_at else self.used

    def roll(self, now: float) -> bool:
        """Reset the window if it expired. Returns True when a reset happened."""
        if now < self.reset_at:
            return False
        self.used = 0
        self.reset_at = now + DAY_SECONDS
        return True


@dataclass
class QuotaReservation:
    pool: QuotaPool
    units: int
    settled: bool = False


@dataclass
class RateLimitResult:
    allowed: bool
    gate: Gate | None = None
    reason: str | None = None
    retry_after: float | None = None
    reservation: QuotaReservation | None = None

    @classmethod
    def ok(cls, reservation: QuotaReservation | None = None) -> RateLimitResult:
        return cls(allowed=True, reservation=reservation)


@dataclass
class RateLimiterState:
    """All mutable counters owned by one RateLimiter."""

    user_limits: dict[tuple[str, str], UserRateLimit] = field(default_factory=dict)
    session_response_counts: dict[str, int] = field(default_factory=dict)
    quotas: dict[QuotaPool, DailyQuota] = field(default_factory=dict)

    @classmethod
    def create(cls, now: float) -> RateLimiterState:
        return cls(quotas={pool: DailyQuota(reset_at=now + DAY_SECONDS) for pool in QuotaPool})


class RateLimiter:
    """Enforces the per-user, per-session and per-platform response gates."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        state: RateLimiterState | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self.state = state or RateLimiterState.create(clock())
        self._lock = threading.Lock()
        self._warning_cooldown: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _effective(self, overrides: RateLimitOverrides | None) -> RateLimitConfig:
        if overrides is None:
            return self.config
        changes = {
            k: v
            for k, v in overrides.model_dump().items()
            if v is not None and hasattr(self.config, k)
        }
        return replace(self.config, **changes)

    def _pool_limit(self, pool: QuotaPool) -> int:
        if pool is QuotaPool.YOUTUBE:
            return self.config.youtube_quota_per_day
        return self.config.twitch_whispers_per_day

    def _quota(self, pool: QuotaPool) -> DailyQuota:
        quota = self.state.quotas.get(pool)
        if quota is None:
            quota = DailyQuota(reset_at=self._clock() + DAY_SECONDS)
            self.state.quotas[pool] = quota
        return quota

    def _roll(self, pool: QuotaPool, now: float) -> None:
        if self._quota(pool).roll(now):
            logger.info(f"{pool.value} quota window reset")

    def _log_warning_once(self, key: str, message: str, cooldown: int = 60) -> None:
        """Keep repeated exhaustion warnings out of the log"""
        current_time = time.monotonic()
        last = self._warning_cooldown.get(key)
        if last is not None and current_time - last < cooldown:
            return
        self._warning_cooldown[key] = current_time
        logger.warning(message)

    def _check_user(
        self, session_id: str, username: str, config: RateLimitConfig, now: float
    ) -> RateLimitResult:
        user_limit = self.state.user_limits.get((session_id, username))
        if user_limit is None:
            return RateLimitResult.ok()

        if user_limit.response_count >= config.max_responses_per_user:
            return RateLimitResult(
                allowed=False,
                gate=Gate.USER,
                reason=f"Maximum {config.max_responses_per_user} responses per user reached",
            )

        elapsed = now - user_limit.last_response_time
        if user_limit.last_response_time > 0 and elapsed < config.min_response_delay_seconds:
            return RateLimitResult(
                allowed=False,
                gate=Gate.USER,
                reason="Too soon since last response to this user",
                retry_after=config.min_response_delay_seconds - elapsed,
            )

        return RateLimitResult.ok()

    def _check_session(self, session_id: str, config: RateLimitConfig) -> RateLimitResult:
        count = self.state.session_response_counts.get(session_id, 0)
        if count >= config.max_responses_per_session:
            return RateLimitResult(
                allowed=False,
                gate=Gate.SESSION,
                reason=f"Maximum {config.max_responses_per_session} responses per session reached",
            )
        return RateLimitResult.ok()

    def _check_pool(self, pool: QuotaPool, units: int, now: float) -> RateLimitResult:
        quota = self._quota(pool)
        limit = self._pool_limit(pool)
        if quota.used_at(now) + quota.reserved + units > limit:
            reset_at = quota.reset_at if now < quota.reset_at else now + DAY_SECONDS
            return RateLimitResult(
                allowed=False,
                gate=Gate.PLATFORM,
                reason=f"{pool.value} daily limit reached ({limit})",
                retry_after=reset_at - now,
            )
        return RateLimitResult.ok()

    # ------------------------------------------------------------------
    # Per-user and per-session gates
    # ------------------------------------------------------------------

    def check_user_limit(
        self, session_id: str, username: str, overrides: RateLimitOverrides | None = None
    ) -> RateLimitResult:
        """Check the per-user cap and minimum delay for one chatter."""
        with self._lock:
            return self._check_user(session_id, username, self._effective(overrides), self._clock())

    def check_session_limit(
        self, session_id: str, overrides: RateLimitOverrides | None = None
    ) -> RateLimitResult:
        with self._lock:
            return self._check_session(session_id, self._effective(overrides))

    def check_response_allowed(
        self, session_id: str, username: str, overrides: RateLimitOverrides | None = None
    ) -> RateLimitResult:
        """Check the user gate then the session gate, returning the first rejection."""
        config = self._effective(overrides)
        with self._lock:
            result = self._check_user(session_id, username, config, self._clock())
            if not result.allowed:
                return result
            return self._check_session(session_id, config)

    def record_user_response(self, session_id: str, username: str) -> None:
        with self._lock:
            now = self._clock()
            user_limit = self.state.user_limits.setdefault(
                (session_id, username), UserRateLimit(first_response_time=now)
            )
            user_limit.response_count += 1
            user_limit.last_response_time = now
            count = user_limit.response_count
        logger.info(f"Recorded response to {username} in session {session_id} ({count} total)")

    def record_session_response(self, session_id: str) -> None:
        with self._lock:
            count = self.state.session_response_counts.get(session_id, 0) + 1
            self.state.session_response_counts[session_id] = count
        logger.info(f"Recorded session response for {session_id} ({count} total)")

    def record_response(self, session_id: str, username: str) -> None:
        """Record a sent auto-reply on both the user and the session gate."""
        self.record_user_response(session_id, username)
        self.record_session_response(session_id)

    # ------------------------------------------------------------------
    # Platform pools
    # ------------------------------------------------------------------

    def check_platform_quota(self, pool: QuotaPool, units: int) -> RateLimitResult:
        """Check whether ``units`` fit in the pool. Never mutates the pool."""
        with self._lock:
            return self._check_pool(pool, units, self._clock())

    def reserve_platform_quota(self, pool: QuotaPool, units: int) -> RateLimitResult:
        """Atomically check the pool and hold ``units`` for an in-flight call.

        The returned result carries the reservation when allowed. The caller
        must settle it with ``commit_reservation`` or ``release_reservation``.
        """
        with self._lock:
            now = self._clock()
            self._roll(pool, now)
            result = self._check_pool(pool, units, now)
            if not result.allowed:
                self._log_warning_once(pool.value, f"Quota rejected: {result.reason}")
                return result
            self._quota(pool).reserved += units
            return RateLimitResult.ok(QuotaReservation(pool=pool, units=units))

    def commit_reservation(self, reservation: QuotaReservation) -> None:
        """Move reserved units into the used counter after a successful call."""
        with self._lock:
            if reservation.settled:
                return
            reservation.settled = True
            now = self._clock()
            self._roll(reservation.pool, now)
            quota = self._quota(reservation.pool)
            quota.reserved = max(0, quota.reserved - reservation.units)
            quota.used += reservation.units
            used = quota.used
        logger.debug(
            f"Recorded {reservation.pool.value} usage: {reservation.units} ({used} in window)"
        )

    def release_reservation(self, reservation: QuotaReservation) -> None:
        """Return reserved units to the pool after a failed call."""
        with self._lock:
            if reservation.settled:
                return
            reservation.settled = True
            quota = self._quota(reservation.pool)
            quota.reserved = max(0, quota.reserved - reservation.units)

    def record_platform_quota(self, pool: QuotaPool, units: int) -> None:
        with self._lock:
            now = self._clock()
            self._roll(pool, now)
            quota = self._quota(pool)
            quota.used += units
            used = quota.used
        logger.info(f"Recorded {pool.value} usage: {units} units ({used} in window)")

    def get_platform_remaining(self, pool: QuotaPool) -> int:
        with self._lock:
            now = self._clock()
            quota = self._quota(pool)
            return max(0, self._pool_limit(pool) - quota.used_at(now) - quota.reserved)

    # YouTube: 5 units per list call, 50 per insert

    def check_youtube_quota(self, units: int) -> RateLimitResult:
        return self.check_platform_quota(QuotaPool.YOUTUBE, units)

    def record_youtube_quota(self, units: int) -> None:
        self.record_platform_quota(QuotaPool.YOUTUBE, units)

    def get_youtube_remaining_quota(self) -> int:
        return self.get_platform_remaining(QuotaPool.YOUTUBE)

    # Twitch: hard limit of 40 whispers per day

    def check_twitch_whisper_limit(self) -> RateLimitResult:
        return self.check_platform_quota(QuotaPool.TWITCH_WHISPER, 1)

    def record_twitch_whisper(self) -> None:
        self.record_platform_quota(QuotaPool.TWITCH_WHISPER, 1)

    def get_twitch_remaining_whispers(self) -> int:
        return self.get_platform_remaining(QuotaPool.TWITCH_WHISPER)

    # ------------------------------------------------------------------
    # Introspection and cleanup
    # ------------------------------------------------------------------

    def get_user_remaining_responses(
        self, session_id: str, username: str, overrides: RateLimitOverrides | None = None
    ) -> int:
        config = self._effective(overrides)
        with self._lock:
            user_limit = self.state.user_limits.get((session_id, username))
            if user_limit is None:
                return config.max_responses_per_user
            return max(0, config.max_responses_per_user - user_limit.response_count)

    def get_session_remaining_responses(
        self, session_id: str, overrides: RateLimitOverrides | None = None
    ) -> int:
        config = self._effective(overrides)
        with self._lock:
            count = self.state.session_response_counts.get(session_id, 0)
            return max(0, config.max_responses_per_session - count)

    def reset_session(self, session_id: str) -> None:
        """Drop every per-user and per-session counter belonging to a session."""
        with self._lock:
            for key in [k for k in self.state.user_limits if k[0] == session_id]:
                del self.state.user_limits[key]
            self.state.session_response_counts.pop(session_id, None)
        logger.info(f"Reset limits for session {session_id}")

    def cleanup(self) -> int:
        """Purge per-user entries older than 24h. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [
                key
                for key, limit in self.state.user_limits.items()
                if now - limit.first_response_time > DAY_SECONDS
            ]
            for key in expired:
                del self.state.user_limits[key]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired rate limit entries")
        return len(expired)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            now = self._clock()
            youtube = self._quota(QuotaPool.YOUTUBE)
            twitch = self._quota(QuotaPool.TWITCH_WHISPER)
            return {
                "twitch_whispers_used": twitch.used_at(now),
                "youtube_quota_used": youtube.used_at(now),
                "youtube_quota_reserved": youtube.reserved,
                "active_user_limits": len(self.state.user_limits),
                "active_sessions": len(self.state.session_response_counts),
            }
