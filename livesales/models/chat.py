"""Normalized chat message and outbound send result."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class ChatMessage:
    """One inbound chat message, normalized across platforms."""

    message_id: str
    username: str
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class SendResult:
    """Outcome of ``ChatPlatformAdapter.send``.

    ``cost_units`` is expressed in the platform's own quota unit and is only
    meaningful when ``success`` is true.
    """

    success: bool
    cost_units: int = 0
    error: str | None = None
    permanent: bool = False

    @classmethod
    def ok(cls, cost_units: int) -> SendResult:
        return cls(success=True, cost_units=cost_units)

    @classmethod
    def failed(cls, error: str) -> SendResult:
        return cls(success=False, error=error)

    @classmethod
    def unsupported(cls, platform: str) -> SendResult:
        return cls(
            success=False,
            error=f"{platform} does not support sending messages",
            permanent=True,
        )
