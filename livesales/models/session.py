"""Live session configuration and lifecycle types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .product import Product


class Platform(str, Enum):
    YOUTUBE = "YOUTUBE"
    TWITCH = "TWITCH"
    TIKTOK = "TIKTOK"


class SessionState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    ACTIVE = "ACTIVE"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"


# ============================================
# Platform credentials
# ============================================


class YouTubeCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str
    live_chat_id: str = ""
    # Resolved to a live chat id at connect time when live_chat_id is empty
    video_id: str = ""
    # OAuth bearer token, required by liveChatMessages.insert
    access_token: str = ""


class TwitchCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    client_id: str
    channel_name: str
    bot_username: str
    bot_user_id: str = ""
    reply_mode: str = Field(default="chat", pattern="^(chat|whisper)$")


class TikTokCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    live_room_id: str
    app_id: str = ""
    app_secret: str = ""


class RateLimitOverrides(BaseModel):
    """Per-session overrides for the per-user and per-session gates."""

    model_config = ConfigDict(frozen=True)

    max_responses_per_user: int | None = Field(default=None, ge=0)
    max_responses_per_session: int | None = Field(default=None, ge=0)
    min_response_delay_seconds: float | None = Field(default=None, ge=0)


class LiveSessionConfig(BaseModel):
    """Everything needed to monitor one broadcast, supplied at start time."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(..., min_length=1)
    platform: Platform
    agent_enabled: bool = True
    products: tuple[Product, ...] = ()

    youtube: YouTubeCredentials | None = None
    twitch: TwitchCredentials | None = None
    tiktok: TikTokCredentials | None = None

    rate_limits: RateLimitOverrides | None = None


@dataclass(frozen=True)
class SessionEvent:
    """Lifecycle notification emitted when a session ends on its own."""

    session_id: str
    kind: str
    reason: str
