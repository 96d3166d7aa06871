"""Adapter registry: selects the platform adapter for a session at start time."""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..core.config import LiveSalesSettings
from ..core.rate_limiter import RateLimiter
from ..errors import ConfigurationError
from ..models.session import LiveSessionConfig, Platform
from .base import ChatPlatformAdapter
from .tiktok import TikTokLiveAdapter
from .twitch import TwitchChatAdapter
from .youtube import YouTubeChatAdapter

logger = logging.getLogger("AdapterRegistry")

AdapterFactory = Callable[[LiveSessionConfig, RateLimiter], ChatPlatformAdapter]


class AdapterRegistry:
    def __init__(self) -> None:
        self._factories: dict[Platform, AdapterFactory] = {}

    def register(self, platform: Platform, factory: AdapterFactory) -> None:
        self._factories[platform] = factory

    def create(self, config: LiveSessionConfig, rate_limiter: RateLimiter) -> ChatPlatformAdapter:
        factory = self._factories.get(config.platform)
        if factory is None:
            raise ConfigurationError(f"No adapter registered for {config.platform.value}")
        return factory(config, rate_limiter)

    def __contains__(self, platform: Platform) -> bool:
        return platform in self._factories


def default_registry(settings: LiveSalesSettings | None = None) -> AdapterRegistry:
    """Registry wired with the YouTube, Twitch and TikTok adapters."""
    poll_interval = settings.default_poll_interval if settings else 5.0
    max_retries = settings.adapter_max_retries if settings else 5

    def youtube(config: LiveSessionConfig, limiter: RateLimiter) -> ChatPlatformAdapter:
        if config.youtube is None:
            raise ConfigurationError("YouTube configuration is required")
        if not config.youtube.live_chat_id and not config.youtube.video_id:
            raise ConfigurationError("YouTube configuration needs live_chat_id or video_id")
        return YouTubeChatAdapter(
            config.youtube, limiter, poll_interval=poll_interval, max_retries=max_retries
        )

    def twitch(config: LiveSessionConfig, limiter: RateLimiter) -> ChatPlatformAdapter:
        if config.twitch is None:
            raise ConfigurationError("Twitch configuration is required")
        return TwitchChatAdapter(config.twitch, max_retries=max_retries)

    def tiktok(config: LiveSessionConfig, limiter: RateLimiter) -> ChatPlatformAdapter:
        if config.tiktok is None:
            raise ConfigurationError("TikTok configuration is required")
        return TikTokLiveAdapter(config.tiktok, poll_interval=poll_interval, max_retries=max_retries)

    registry = AdapterRegistry()
    registry.register(Platform.YOUTUBE, youtube)
    registry.register(Platform.TWITCH, twitch)
    registry.register(Platform.TIKTOK, tiktok)
    return registry
