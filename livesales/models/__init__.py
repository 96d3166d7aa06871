"""Data models shared by the livesales core."""

from .chat import ChatMessage, SendResult
from .intent import IntentResult, IntentType
from .interaction import InteractionResult, LeadStatus
from .product import Price, Product
from .session import (
    LiveSessionConfig,
    Platform,
    RateLimitOverrides,
    SessionEvent,
    SessionState,
    TikTokCredentials,
    TwitchCredentials,
    YouTubeCredentials,
)

__all__ = [
    "ChatMessage",
    "IntentResult",
    "IntentType",
    "InteractionResult",
    "LeadStatus",
    "LiveSessionConfig",
    "Platform",
    "Price",
    "Product",
    "RateLimitOverrides",
    "SendResult",
    "SessionEvent",
    "SessionState",
    "TikTokCredentials",
    "TwitchCredentials",
    "YouTubeCredentials",
]
