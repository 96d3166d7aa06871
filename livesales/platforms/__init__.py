"""Chat platform adapters."""

from .base import ChatPlatformAdapter, PollDeferred, PollingChatAdapter, backoff_delay
from .registry import AdapterFactory, AdapterRegistry, default_registry
from .tiktok import TikTokLiveAdapter
from .twitch import TwitchChatAdapter
from .youtube import YouTubeChatAdapter

__all__ = [
    "AdapterFactory",
    "AdapterRegistry",
    "ChatPlatformAdapter",
    "PollDeferred",
    "PollingChatAdapter",
    "TikTokLiveAdapter",
    "TwitchChatAdapter",
    "YouTubeChatAdapter",
    "backoff_delay",
    "default_registry",
]
