"""Chat platform adapter contract.

Every streaming platform is bridged by one ``ChatPlatformAdapter``. The
orchestrator only ever sees the adapter's ``listen()`` stream of well-formed
``ChatMessage`` objects and the ``send()`` result; retries, reconnects and
payload parsing stay inside the adapter.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

from ..core.rate_limiter import QuotaPool
from ..errors import AdapterConnectionError, AdapterError, MalformedPayloadError
from ..models.chat import ChatMessage, SendResult
from ..models.session import Platform

logger = logging.getLogger("PlatformAdapter")

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_RETRIES = 5

# Twitch and YouTube both reject chat lines above 500 characters
MAX_CHAT_MESSAGE_LENGTH = 500


class PollDeferred(Exception):
    """Raised by ``fetch_messages`` when a poll must wait without touching the API.

    Not a failure: the loop sleeps ``retry_after`` seconds and does not count
    it toward the retry limit or mark the adapter ready.
    """

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"poll deferred for {retry_after:.0f}s")
        self.retry_after = retry_after


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 30.0) -> float:
    """Exponential backoff: ``base * 2**attempt`` seconds, capped."""
    return float(min(base * (2**attempt), cap))


def truncate_message(text: str, limit: int = MAX_CHAT_MESSAGE_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


class ChatPlatformAdapter(ABC):
    """Bridge between one external chat surface and the common message shape.

    Class attributes describe the adapter's outbound capability:
      - ``supports_send``: False when the platform has no send API at all
      - ``send_quota``: the shared quota pool a send draws from, if any
      - ``send_cost``: units a successful send consumes in that pool
    """

    platform: Platform
    supports_send: bool = True
    send_quota: QuotaPool | None = None
    send_cost: int = 0

    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
    ) -> None:
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        # Set once the first connect/poll succeeds
        self.ready = asyncio.Event()
        self._stopped = asyncio.Event()

    @abstractmethod
    def listen(self) -> AsyncIterator[ChatMessage]:
        """Yield inbound chat messages until ``stop()`` is called.

        Raises AdapterConnectionError once the retry attempts are exhausted.
        """

    @abstractmethod
    async def send(self, target: str, text: str) -> SendResult:
        """Deliver a reply addressed to ``target`` (a platform username)."""

    def reset_cursor(self) -> None:
        """Forget pagination state so the next ``listen()`` starts fresh."""

    async def close(self) -> None:
        """Release network resources held by the adapter."""

    async def stop(self) -> None:
        """Stop the stream, reset cursors and release connections."""
        self._stopped.set()
        self.ready.clear()
        self.reset_cursor()
        await self.close()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True when the adapter was stopped."""
        if self._stopped.is_set():
            return True
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def _parse_items(
        self, items: Iterable[Any], parser: Callable[[Any], ChatMessage]
    ) -> list[ChatMessage]:
        """Parse raw payload items, dropping malformed ones with a warning."""
        messages: list[ChatMessage] = []
        for item in items:
            try:
                messages.append(parser(item))
            except (MalformedPayloadError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed {self.platform.value} payload: {e}")
        return messages


class PollingChatAdapter(ChatPlatformAdapter):
    """Adapter whose stream is driven by a fixed-interval polling loop."""

    def __init__(self, *, poll_interval: float = DEFAULT_POLL_INTERVAL, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.default_poll_interval = poll_interval
        self.poll_interval = poll_interval

    @abstractmethod
    async def fetch_messages(self) -> list[ChatMessage]:
        """Run one poll. Raise AdapterError on transient I/O failures."""

    def reset_cursor(self) -> None:
        self.poll_interval = self.default_poll_interval

    async def listen(self) -> AsyncIterator[ChatMessage]:
        self._stopped.clear()
        failures = 0

        while not self._stopped.is_set():
            try:
                messages = await self.fetch_messages()
            except PollDeferred as e:
                if await self._sleep(e.retry_after):
                    break
                continue
            except AdapterError as e:
                failures += 1
                if failures > self.max_retries:
                    logger.error(
                        f"{self.platform.value} polling failed {failures} times in a row, giving up"
                    )
                    raise AdapterConnectionError(self.platform.value, failures, e) from e

                delay = backoff_delay(failures, self.backoff_base, self.backoff_cap)
                logger.warning(
                    f"{self.platform.value} poll failed ({failures}/{self.max_retries}): {e}, "
                    f"retrying in {delay:.1f}s"
                )
                if await self._sleep(delay):
                    break
                continue

            failures = 0
            self.ready.set()

            for message in messages:
                yield message

            if await self._sleep(self.poll_interval):
                break
