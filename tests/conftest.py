"""Shared fakes and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

import pytest

from livesales.core.config import RateLimitConfig
from livesales.core.orchestrator import SessionOrchestrator
from livesales.core.rate_limiter import QuotaPool, RateLimiter
from livesales.models import (
    ChatMessage,
    IntentResult,
    IntentType,
    InteractionResult,
    LiveSessionConfig,
    Platform,
    Price,
    Product,
    SendResult,
    SessionEvent,
    YouTubeCredentials,
)
from livesales.platforms.base import ChatPlatformAdapter
from livesales.platforms.registry import AdapterRegistry

HOODIE = Product(
    id="prod-1",
    name="Blue Hoodie",
    description="Ocean blue pullover hoodie",
    price=Price(amount_micros=49_990_000, currency_code="USD"),
    purchase_link="https://shop.example.com/blue-hoodie",
)


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAdapter(ChatPlatformAdapter):
    """Adapter fed from an in-memory queue. Put an exception to make listen() raise it."""

    def __init__(
        self,
        platform: Platform = Platform.YOUTUBE,
        *,
        supports_send: bool = True,
        send_quota: QuotaPool | None = QuotaPool.YOUTUBE,
        send_cost: int = 50,
    ) -> None:
        super().__init__(max_retries=0)
        self.platform = platform
        self.supports_send = supports_send
        self.send_quota = send_quota
        self.send_cost = send_cost
        self.queue: asyncio.Queue[ChatMessage | BaseException] = asyncio.Queue()
        self.sent: list[tuple[str, str]] = []
        self.send_result = SendResult.ok(send_cost)
        self.stop_calls = 0

    async def listen(self) -> AsyncIterator[ChatMessage]:
        self.ready.set()
        while True:
            item = await self.queue.get()
            if isinstance(item, BaseException):
                raise item
            yield item

    async def send(self, target: str, text: str) -> SendResult:
        if not self.supports_send:
            return SendResult.unsupported(self.platform.value)
        self.sent.append((target, text))
        return self.send_result

    async def stop(self) -> None:
        self.stop_calls += 1
        await super().stop()


class FakeClassifier:
    def __init__(self, result: IntentResult | None = None, reply: str = "It's $49.99!") -> None:
        self.result = result or IntentResult(
            intent=IntentType.PRODUCT_INQUIRY,
            confidence=0.8,
            lead_score=70,
            requires_human_review=False,
        )
        self.reply = reply
        self.delay = 0.0
        self.product: object | None = None
        self.classify_calls: list[str] = []
        self.match_calls: list[str | None] = []
        self.generate_calls: list[tuple[str, IntentType]] = []

    async def classify(self, message, products):
        self.classify_calls.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result

    async def match_product(self, message, products, extracted_name=None):
        self.match_calls.append(extracted_name)
        return self.product

    async def generate_response(self, message, intent, product):
        self.generate_calls.append((message, intent))
        return self.reply


@dataclass
class LeadUpdate:
    session_id: str
    username: str
    lead_score: int
    product: Product | None


class RecordingSink:
    def __init__(self) -> None:
        self.interactions: list[InteractionResult] = []
        self.leads: list[LeadUpdate] = []

    async def save_interaction(self, result: InteractionResult) -> None:
        self.interactions.append(result)

    async def update_lead_score(self, session_id, username, lead_score, product) -> None:
        self.leads.append(LeadUpdate(session_id, username, lead_score, product))


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.01)


def youtube_session(session_id: str = "s1", **kwargs) -> LiveSessionConfig:
    return LiveSessionConfig(
        session_id=session_id,
        platform=Platform.YOUTUBE,
        products=(HOODIE,),
        youtube=YouTubeCredentials(api_key="key", live_chat_id="chat-1"),
        **kwargs,
    )


def message(message_id: str, username: str = "alice", text: str = "how much is the blue hoodie"):
    return ChatMessage(message_id=message_id, username=username, text=text)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(RateLimitConfig(), clock=clock)


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def events() -> list[SessionEvent]:
    return []


@pytest.fixture
def registry(adapter: FakeAdapter) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.created = 0  # type: ignore[attr-defined]

    def factory(config, rate_limiter):
        registry.created += 1  # type: ignore[attr-defined]
        return adapter

    for platform in Platform:
        registry.register(platform, factory)
    return registry


@pytest.fixture
async def orchestrator(registry, classifier, limiter, sink, events):
    orchestrator = SessionOrchestrator(
        registry,
        classifier,
        limiter,
        sink,
        classify_timeout=0.5,
        send_timeout=0.5,
        stop_timeout=0.5,
        on_session_event=events.append,
    )
    yield orchestrator
    await orchestrator.shutdown()
