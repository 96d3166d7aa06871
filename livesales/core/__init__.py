"""Core modules for the live sales agent."""

from .config import DAY_SECONDS, LiveSalesSettings, RateLimitConfig, get_settings
from .logging import setup_logging
from .policy import should_auto_respond
from .rate_limiter import Gate, QuotaPool, RateLimiter, RateLimiterState, RateLimitResult

__all__ = [
    # Settings
    "get_settings",
    "LiveSalesSettings",
    "RateLimitConfig",
    "DAY_SECONDS",
    # Setup functions
    "setup_logging",
    # Rate limiting
    "Gate",
    "QuotaPool",
    "RateLimiter",
    "RateLimiterState",
    "RateLimitResult",
    # Decision policy
    "should_auto_respond",
]
