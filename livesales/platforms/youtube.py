"""YouTube Live Chat adapter.

Polls ``liveChatMessages.list`` at the interval the API asks for and posts
replies with ``liveChatMessages.insert``. Every API call is charged against
the shared YouTube quota pool:
  - videos.list (live chat id lookup): 1 unit
  - liveChatMessages.list: 5 units
  - liveChatMessages.insert: 50 units (reserved by the orchestrator)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from ..core.rate_limiter import (
    YOUTUBE_INSERT_COST,
    YOUTUBE_LIST_COST,
    YOUTUBE_VIDEOS_LIST_COST,
    QuotaPool,
    RateLimiter,
)
from ..errors import AdapterError, MalformedPayloadError
from ..models.chat import ChatMessage, SendResult
from ..models.session import Platform, YouTubeCredentials
from .base import PollDeferred, PollingChatAdapter, truncate_message

logger = logging.getLogger("YouTubeAdapter")

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"

# Longest wait between polls while the daily quota is exhausted
QUOTA_WAIT_CAP = 300.0


def parse_youtube_item(item: dict[str, Any]) -> ChatMessage:
    """Convert one ``liveChatMessage`` resource into a ChatMessage."""
    message_id = item.get("id")
    snippet = item.get("snippet") or {}
    author = item.get("authorDetails") or {}
    text = snippet.get("displayMessage")

    if not message_id or text is None:
        raise MalformedPayloadError(f"liveChatMessage missing id or displayMessage: {item!r}")

    published_at = snippet.get("publishedAt")
    timestamp = (
        datetime.fromisoformat(published_at.replace("Z", "+00:00"))
        if published_at
        else datetime.now(timezone.utc)
    )

    return ChatMessage(
        message_id=message_id,
        username=author.get("displayName") or "Unknown",
        text=text,
        timestamp=timestamp,
        user_id=author.get("channelId") or None,
        display_name=author.get("displayName") or None,
    )


class YouTubeChatAdapter(PollingChatAdapter):
    platform = Platform.YOUTUBE
    send_quota = QuotaPool.YOUTUBE
    send_cost = YOUTUBE_INSERT_COST

    def __init__(
        self,
        credentials: YouTubeCredentials,
        rate_limiter: RateLimiter | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self.live_chat_id = credentials.live_chat_id
        self._next_page_token: str | None = None
        self._http = http
        self._owns_http = http is None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=10.0)
            self._owns_http = True
        return self._http

    async def _quota_call(self, units: int, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Run one API call inside a quota reservation.

        Units are committed only when YouTube answers with a 2xx.
        """
        limiter = self.rate_limiter
        if limiter is None:
            try:
                return await self._client().request(method, url, **kwargs)
            except httpx.HTTPError as e:
                raise AdapterError(f"YouTube {method} failed: {type(e).__name__}: {e}") from e

        verdict = limiter.reserve_platform_quota(QuotaPool.YOUTUBE, units)
        if not verdict.allowed or verdict.reservation is None:
            raise PollDeferred(verdict.retry_after or self.default_poll_interval)
        reservation = verdict.reservation

        try:
            response = await self._client().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            limiter.release_reservation(reservation)
            raise AdapterError(f"YouTube {method} failed: {type(e).__name__}: {e}") from e

        if response.is_success:
            limiter.commit_reservation(reservation)
        else:
            limiter.release_reservation(reservation)
        return response

    # ------------------------------------------------------------------
    # Listening
    # ------------------------------------------------------------------

    async def resolve_live_chat_id(self, video_id: str) -> str:
        """Look up the active live chat id of a broadcast video."""
        response = await self._quota_call(
            YOUTUBE_VIDEOS_LIST_COST,
            "GET",
            f"{YOUTUBE_API_BASE}/videos",
            params={"part": "liveStreamingDetails", "id": video_id, "key": self.credentials.api_key},
        )
        if not response.is_success:
            raise AdapterError(f"YouTube API error: {response.status_code}")

        items = response.json().get("items") or []
        if not items:
            raise AdapterError(f"Video not found: {video_id}")

        live_chat_id = (items[0].get("liveStreamingDetails") or {}).get("activeLiveChatId")
        if not live_chat_id:
            raise AdapterError(f"No active live chat for video: {video_id}")

        logger.info(f"Retrieved live chat ID for video {video_id}")
        return str(live_chat_id)

    async def fetch_messages(self) -> list[ChatMessage]:
        try:
            if not self.live_chat_id:
                self.live_chat_id = await self.resolve_live_chat_id(self.credentials.video_id)

            params = {
                "part": "snippet,authorDetails",
                "liveChatId": self.live_chat_id,
                "key": self.credentials.api_key,
            }
            if self._next_page_token:
                params["pageToken"] = self._next_page_token

            response = await self._quota_call(
                YOUTUBE_LIST_COST, "GET", f"{YOUTUBE_API_BASE}/liveChat/messages", params=params
            )
        except PollDeferred as e:
            wait = min(max(e.retry_after, self.default_poll_interval), QUOTA_WAIT_CAP)
            logger.warning(f"YouTube quota exhausted, next poll in {wait:.0f}s")
            raise PollDeferred(wait) from e

        if not response.is_success:
            raise AdapterError(f"YouTube API error: {response.status_code} {response.reason_phrase}")

        try:
            data = response.json()
        except ValueError as e:
            raise AdapterError(f"YouTube returned invalid JSON: {e}") from e

        self._next_page_token = data.get("nextPageToken") or None
        interval_ms = data.get("pollingIntervalMillis")
        self.poll_interval = (
            interval_ms / 1000 if isinstance(interval_ms, (int, float)) and interval_ms > 0
            else self.default_poll_interval
        )

        messages = self._parse_items(data.get("items") or [], parse_youtube_item)
        logger.debug(f"Fetched {len(messages)} messages from YouTube Live Chat")
        return messages

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, target: str, text: str) -> SendResult:
        """Post a reply via liveChatMessages.insert.

        The 50-unit cost is reserved and recorded by the caller, not here.
        """
        if not self.live_chat_id:
            return SendResult.failed("YouTube live chat id is not resolved yet")

        headers: dict[str, str] = {}
        params = {"part": "snippet"}
        if self.credentials.access_token:
            headers["Authorization"] = f"Bearer {self.credentials.access_token}"
        else:
            params["key"] = self.credentials.api_key

        body = {
            "snippet": {
                "liveChatId": self.live_chat_id,
                "type": "textMessageEvent",
                "textMessageDetails": {"messageText": truncate_message(f"@{target} {text}", 200)},
            }
        }

        try:
            response = await self._client().post(
                f"{YOUTUBE_API_BASE}/liveChat/messages", params=params, json=body, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Error posting message to YouTube Live Chat: {e}")
            return SendResult.failed(f"{type(e).__name__}: {e}")

        if not response.is_success:
            logger.error(f"YouTube insert failed: {response.status_code} {response.text[:200]}")
            return SendResult.failed(f"YouTube API error: {response.status_code}")

        logger.info(f"Posted reply to @{target} in YouTube Live Chat")
        return SendResult.ok(YOUTUBE_INSERT_COST)

    def reset_cursor(self) -> None:
        super().reset_cursor()
        self._next_page_token = None

    async def close(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
