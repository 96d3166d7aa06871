"""TikTok Live adapter.

Comments arrive either by polling the comment list endpoint or through
webhook events pushed into the adapter. TikTok offers no API for posting
live comments, so ``send`` is a permanent "unsupported" failure.

API Documentation: https://developers.tiktok.com/doc/live-events-api-get-started
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any

import httpx

from ..errors import AdapterError, MalformedPayloadError
from ..models.chat import ChatMessage, SendResult
from ..models.session import Platform, TikTokCredentials
from .base import PollingChatAdapter

logger = logging.getLogger("TikTokAdapter")

TIKTOK_API_BASE = "https://open-api.tiktok.com"

COMMENT_EVENT = "live.comment"


def parse_tiktok_comment(comment: dict[str, Any]) -> ChatMessage:
    comment_id = comment.get("comment_id")
    text = comment.get("text")
    if not comment_id or text is None:
        raise MalformedPayloadError(f"TikTok comment missing comment_id or text: {comment!r}")

    user = comment.get("user") or {}
    create_time = comment.get("create_time")
    timestamp = (
        datetime.fromtimestamp(create_time, tz=timezone.utc)
        if isinstance(create_time, (int, float))
        else datetime.now(timezone.utc)
    )

    return ChatMessage(
        message_id=str(comment_id),
        username=user.get("nickname") or "Unknown",
        text=text,
        timestamp=timestamp,
        user_id=user.get("user_id") or None,
        display_name=user.get("nickname") or None,
    )


def parse_webhook_payload(payload: dict[str, Any]) -> ChatMessage | None:
    """Turn a webhook event into a ChatMessage. Non-comment events return None."""
    if payload.get("event_type") != COMMENT_EVENT:
        return None
    data = payload.get("data")
    if not isinstance(data, dict):
        raise MalformedPayloadError("TikTok webhook event without data object")
    return parse_tiktok_comment(data)


def verify_webhook_signature(body: bytes | str, signature: str, app_secret: str) -> bool:
    """Check the HMAC-SHA256 hex signature TikTok attaches to webhook calls."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    expected = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


class TikTokLiveAdapter(PollingChatAdapter):
    platform = Platform.TIKTOK
    supports_send = False

    def __init__(
        self,
        credentials: TikTokCredentials,
        *,
        http: httpx.AsyncClient | None = None,
        poll_api: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.credentials = credentials
        self.poll_api = poll_api
        self._cursor: str | None = None
        self._webhook_backlog: deque[ChatMessage] = deque(maxlen=1000)
        self._http = http
        self._owns_http = http is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=10.0)
            self._owns_http = True
        return self._http

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def push_webhook_payload(self, payload: dict[str, Any]) -> bool:
        """Queue a webhook comment for the next poll cycle. Returns True if queued."""
        try:
            message = parse_webhook_payload(payload)
        except (MalformedPayloadError, TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed TikTok webhook payload: {e}")
            return False
        if message is None:
            return False
        self._webhook_backlog.append(message)
        return True

    def verify_signature(self, body: bytes | str, signature: str) -> bool:
        if not self.credentials.app_secret:
            logger.warning("TikTok app_secret not configured, rejecting webhook")
            return False
        return verify_webhook_signature(body, signature, self.credentials.app_secret)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def fetch_messages(self) -> list[ChatMessage]:
        messages = list(self._webhook_backlog)
        self._webhook_backlog.clear()

        if self.poll_api:
            messages.extend(await self._fetch_comments())
        return messages

    async def _fetch_comments(self) -> list[ChatMessage]:
        try:
            response = await self._client().get(
                f"{TIKTOK_API_BASE}/live/comment/list/",
                params={"room_id": self.credentials.live_room_id, "cursor": self._cursor or "0"},
                headers={"Authorization": f"Bearer {self.credentials.access_token}"},
            )
        except httpx.HTTPError as e:
            raise AdapterError(f"TikTok request failed: {type(e).__name__}: {e}") from e

        if not response.is_success:
            raise AdapterError(f"TikTok API error: {response.status_code} {response.reason_phrase}")

        try:
            data = response.json().get("data") or {}
        except ValueError as e:
            raise AdapterError(f"TikTok returned invalid JSON: {e}") from e

        if data.get("error_code") != 0:
            raise AdapterError(f"TikTok API error: {data.get('description')}")

        if data.get("cursor"):
            self._cursor = str(data["cursor"])

        comments = self._parse_items(data.get("comments") or [], parse_tiktok_comment)
        logger.debug(f"Fetched {len(comments)} comments from TikTok Live")
        return comments

    async def send(self, target: str, text: str) -> SendResult:
        return SendResult.unsupported(self.platform.value)

    def reset_cursor(self) -> None:
        super().reset_cursor()
        self._cursor = None

    async def close(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
