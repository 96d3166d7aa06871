"""Twitch chat adapter.

Receives chat over Twitch IRC (websocket) and replies either in chat
(``PRIVMSG``, no daily quota) or by whisper through the Helix API, which
draws from the shared 40-per-day whisper pool.

IRC Documentation: https://dev.twitch.tv/docs/irc
Whispers API: https://dev.twitch.tv/docs/api/reference#send-whisper
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any

import aiohttp
import httpx

from ..core.rate_limiter import QuotaPool
from ..errors import AdapterConnectionError, MalformedPayloadError
from ..models.chat import ChatMessage, SendResult
from ..models.session import Platform, TwitchCredentials
from .base import ChatPlatformAdapter, backoff_delay, truncate_message

logger = logging.getLogger("TwitchAdapter")

TWITCH_IRC_URL = "wss://irc-ws.chat.twitch.tv:443"
HELIX_BASE = "https://api.twitch.tv/helix"

# Whispers are capped at 500 characters for new recipients
MAX_WHISPER_LENGTH = 500

_PRIVMSG_RE = re.compile(
    r"^(?:@(?P<tags>\S+) )?:(?P<login>[^!\s]+)![^@\s]+@\S+ PRIVMSG #(?P<channel>\S+) :(?P<text>.*)$"
)

_TAG_ESCAPES = {":": ";", "s": " ", "\\": "\\", "r": "\r", "n": "\n"}

LOGIN_FAILED_NOTICES = ("Login authentication failed", "Improperly formatted auth")


def _unescape_tag(value: str) -> str:
    out: list[str] = []
    chars = iter(value)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            out.append(_TAG_ESCAPES.get(nxt, nxt))
        else:
            out.append(ch)
    return "".join(out)


def parse_irc_tags(raw: str) -> dict[str, str]:
    tags: dict[str, str] = {}
    for part in raw.split(";"):
        if not part:
            continue
        key, _, value = part.partition("=")
        tags[key] = _unescape_tag(value)
    return tags


def irc_command(line: str) -> str:
    """Return the command token of an IRC line, after the optional @tags and :prefix."""
    parts = line.split(" ")
    index = 0
    if parts[index].startswith("@"):
        index += 1
    if index < len(parts) and parts[index].startswith(":"):
        index += 1
    return parts[index] if index < len(parts) else ""


def parse_privmsg(line: str) -> ChatMessage | None:
    """Parse one IRC line. Returns None for anything that is not a PRIVMSG.

    Raises MalformedPayloadError for a PRIVMSG that cannot be parsed.
    """
    if irc_command(line) != "PRIVMSG":
        return None

    match = _PRIVMSG_RE.match(line)
    if not match:
        raise MalformedPayloadError(f"Unparseable PRIVMSG: {line[:120]!r}")

    tags = parse_irc_tags(match.group("tags") or "")
    login = match.group("login")

    sent_ts = tags.get("tmi-sent-ts", "")
    timestamp = (
        datetime.fromtimestamp(int(sent_ts) / 1000, tz=timezone.utc)
        if sent_ts.isdigit()
        else datetime.now(timezone.utc)
    )

    message_id = tags.get("id")
    if not message_id:
        raise MalformedPayloadError(f"PRIVMSG without id tag from {login}")

    return ChatMessage(
        message_id=message_id,
        username=login,
        text=match.group("text").rstrip("\r"),
        timestamp=timestamp,
        user_id=tags.get("user-id") or None,
        display_name=tags.get("display-name") or login,
    )


class TwitchChatAdapter(ChatPlatformAdapter):
    platform = Platform.TWITCH

    def __init__(
        self,
        credentials: TwitchCredentials,
        *,
        session: aiohttp.ClientSession | None = None,
        http: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.credentials = credentials
        self.channel = credentials.channel_name.lower().lstrip("#")

        if credentials.reply_mode == "whisper":
            self.send_quota = QuotaPool.TWITCH_WHISPER
            self.send_cost = 1

        self._session = session
        self._owns_session = session is None
        self._http = http
        self._owns_http = http is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._user_ids: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def _connect(self) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        ws = await self._session.ws_connect(TWITCH_IRC_URL, heartbeat=60)
        await ws.send_str("CAP REQ :twitch.tv/tags twitch.tv/commands")
        await ws.send_str(f"PASS oauth:{self.credentials.access_token}")
        await ws.send_str(f"NICK {self.credentials.bot_username.lower()}")
        await ws.send_str(f"JOIN #{self.channel}")
        return ws

    async def listen(self) -> AsyncIterator[ChatMessage]:
        self._stopped.clear()
        attempts = 0

        while not self._stopped.is_set():
            try:
                ws = self._ws = await self._connect()
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                attempts += 1
                if attempts > self.max_retries:
                    logger.error("Max reconnect attempts reached")
                    raise AdapterConnectionError(self.platform.value, attempts, e) from e
                delay = backoff_delay(attempts, self.backoff_base, self.backoff_cap)
                logger.warning(
                    f"Twitch IRC connect failed: {e}, retrying in {delay:.1f}s "
                    f"(attempt {attempts}/{self.max_retries})"
                )
                if await self._sleep(delay):
                    break
                continue

            attempts = 0
            self.ready.set()
            logger.info(f"Connected to Twitch IRC #{self.channel}")

            reconnect = False
            async for frame in ws:
                if frame.type != aiohttp.WSMsgType.TEXT:
                    if frame.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
                    continue

                for line in frame.data.split("\r\n"):
                    if not line:
                        continue

                    command = irc_command(line)
                    if command == "PING":
                        await ws.send_str("PONG" + line[4:])
                        continue
                    if command == "NOTICE" and any(n in line for n in LOGIN_FAILED_NOTICES):
                        logger.error(f"Twitch IRC rejected credentials for #{self.channel}")
                        self.ready.clear()
                        await self._close_ws()
                        raise AdapterConnectionError(self.platform.value, 1)
                    if command == "RECONNECT":
                        logger.info("Twitch requested reconnect")
                        reconnect = True
                        break

                    try:
                        message = parse_privmsg(line)
                    except MalformedPayloadError as e:
                        logger.warning(f"Dropping malformed Twitch payload: {e}")
                        continue
                    if message is not None:
                        yield message

                if reconnect:
                    break

            self.ready.clear()
            await self._close_ws()
            if self._stopped.is_set():
                break

            attempts += 1
            if attempts > self.max_retries:
                logger.error("Max reconnect attempts reached")
                raise AdapterConnectionError(self.platform.value, attempts)
            delay = backoff_delay(attempts, self.backoff_base, self.backoff_cap)
            logger.warning(
                f"Disconnected from Twitch IRC, reconnecting in {delay:.1f}s "
                f"(attempt {attempts}/{self.max_retries})"
            )
            if await self._sleep(delay):
                break

    async def _close_ws(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _helix_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.access_token}",
            "Client-Id": self.credentials.client_id,
        }

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=10.0)
            self._owns_http = True
        return self._http

    async def get_user_id(self, login: str) -> str | None:
        """Resolve a Twitch login to a user id via Helix (cached)."""
        login = login.lower()
        if login in self._user_ids:
            return self._user_ids[login]

        try:
            response = await self._client().get(
                f"{HELIX_BASE}/users", params={"login": login}, headers=self._helix_headers()
            )
        except httpx.HTTPError as e:
            logger.error(f"Error getting Twitch user ID for {login}: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"Twitch API error resolving {login}: {response.status_code}")
            return None

        users = response.json().get("data", [])
        if not users:
            return None

        self._user_ids[login] = users[0]["id"]
        return self._user_ids[login]

    async def send(self, target: str, text: str) -> SendResult:
        if self.credentials.reply_mode == "whisper":
            return await self.send_whisper(target, text)
        return await self.send_chat(f"@{target} {text}")

    async def send_chat(self, text: str) -> SendResult:
        ws = self._ws
        if ws is None or ws.closed:
            return SendResult.failed("Not connected to Twitch IRC")

        try:
            await ws.send_str(f"PRIVMSG #{self.channel} :{truncate_message(text)}")
        except (aiohttp.ClientError, ConnectionResetError) as e:
            logger.error(f"Error sending to #{self.channel}: {e}")
            return SendResult.failed(f"{type(e).__name__}: {e}")

        logger.info(f"Sent message to #{self.channel}")
        return SendResult.ok(0)

    async def send_whisper(self, target: str, text: str) -> SendResult:
        """Whisper a user. Limited to 40 per day by the caller's quota pool."""
        if not self.credentials.bot_user_id:
            return SendResult.failed("bot_user_id is required for whispers")

        to_user_id = await self.get_user_id(target)
        if not to_user_id:
            return SendResult.failed(f"Unknown Twitch user: {target}")

        try:
            response = await self._client().post(
                f"{HELIX_BASE}/whispers",
                params={"from_user_id": self.credentials.bot_user_id, "to_user_id": to_user_id},
                json={"message": truncate_message(text, MAX_WHISPER_LENGTH)},
                headers=self._helix_headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"Error sending Twitch whisper: {e}")
            return SendResult.failed(f"{type(e).__name__}: {e}")

        if response.status_code not in (200, 204):
            logger.error(f"Twitch Whisper API error: {response.status_code} - {response.text[:200]}")
            return SendResult.failed(f"Twitch Whisper API error: {response.status_code}")

        logger.info(f"Sent whisper to {target}")
        return SendResult.ok(1)

    async def close(self) -> None:
        await self._close_ws()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
