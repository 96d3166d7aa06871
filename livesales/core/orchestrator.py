"""
Live session orchestration.

Each started session owns one adapter and one runner task. The runner
drains the adapter's message stream in arrival order and pushes every
message through the pipeline:

    dedupe -> agent enabled? -> classify -> match product -> policy
    -> platform can send? -> user gate -> session gate -> reserve quota
    -> generate reply -> send -> record (or release on failure)

Every processed message produces exactly one InteractionResult, which is
handed to the persistence sink. Nothing in the pipeline raises to the
caller of ``start_session``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from cachetools import TTLCache  # type: ignore[import-untyped]

from ..errors import AdapterConnectionError, SessionNotFoundError
from ..models.chat import ChatMessage, SendResult
from ..models.intent import LEAD_INTENTS, IntentResult, IntentType
from ..models.interaction import InteractionResult
from ..models.product import Product
from ..models.session import LiveSessionConfig, SessionEvent, SessionState
from ..platforms.base import ChatPlatformAdapter
from ..platforms.registry import AdapterRegistry, default_registry
from ..services.classifier import IntentClassifier
from ..services.persistence import InteractionSink, LoggingSink
from .config import DAY_SECONDS, LiveSalesSettings
from .policy import should_auto_respond
from .rate_limiter import RateLimiter

logger = logging.getLogger("Orchestrator")

CONNECTION_FAILURE_REASON = "session ended due to repeated connection failure"

# Processed message ids remembered per session for duplicate suppression
DEDUPE_MAXSIZE = 10_000

SessionEventHandler = Callable[[SessionEvent], Awaitable[None] | None]


@dataclass
class LiveSession:
    """Runtime state of one monitored broadcast."""

    config: LiveSessionConfig
    adapter: ChatPlatformAdapter
    processed: TTLCache
    state: SessionState = SessionState.IDLE
    runner: asyncio.Task | None = None
    ready_watcher: asyncio.Task | None = None
    # Held while one message is in the pipeline
    pipeline: asyncio.Lock = field(default_factory=asyncio.Lock)
    # Set once teardown has finished and the id is free again
    stopped: asyncio.Event = field(default_factory=asyncio.Event)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    messages_processed: int = 0
    auto_responses: int = 0
    skipped: Counter[str] = field(default_factory=Counter)

    @property
    def session_id(self) -> str:
        return self.config.session_id

    @property
    def closing(self) -> bool:
        return self.state in (SessionState.STOPPING, SessionState.STOPPED)


class SessionOrchestrator:
    def __init__(
        self,
        registry: AdapterRegistry,
        classifier: IntentClassifier,
        rate_limiter: RateLimiter,
        sink: InteractionSink | None = None,
        *,
        classify_timeout: float = 10.0,
        send_timeout: float = 10.0,
        stop_timeout: float = 10.0,
        cleanup_interval: float = 600.0,
        on_session_event: SessionEventHandler | None = None,
    ) -> None:
        self.registry = registry
        self.classifier = classifier
        self.rate_limiter = rate_limiter
        self.sink: InteractionSink = sink or LoggingSink()
        self.classify_timeout = classify_timeout
        self.send_timeout = send_timeout
        self.stop_timeout = stop_timeout
        self.cleanup_interval = cleanup_interval
        self.on_session_event = on_session_event

        self._sessions: dict[str, LiveSession] = {}
        self._cleanup_task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        settings: LiveSalesSettings,
        classifier: IntentClassifier,
        sink: InteractionSink | None = None,
        *,
        registry: AdapterRegistry | None = None,
        rate_limiter: RateLimiter | None = None,
        on_session_event: SessionEventHandler | None = None,
    ) -> SessionOrchestrator:
        return cls(
            registry or default_registry(settings),
            classifier,
            rate_limiter or RateLimiter(settings.rate_limit_config()),
            sink,
            classify_timeout=settings.classifier_timeout,
            send_timeout=settings.send_timeout_seconds,
            stop_timeout=settings.stop_timeout_seconds,
            cleanup_interval=settings.cleanup_interval_seconds,
            on_session_event=on_session_event,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_session(self, config: LiveSessionConfig) -> None:
        """Start monitoring a live session. A second call for a running id is a no-op.

        Raises ConfigurationError when the platform credentials are missing.
        """
        existing = self._sessions.get(config.session_id)
        if existing is not None and existing.state is SessionState.STOPPING:
            logger.info(f"Waiting for session {config.session_id} to finish stopping")
            await existing.stopped.wait()
            existing = self._sessions.get(config.session_id)
        if existing is not None and not existing.closing:
            logger.warning(f"Session {config.session_id} is already active")
            return

        adapter = self.registry.create(config, self.rate_limiter)
        session = LiveSession(
            config=config,
            adapter=adapter,
            processed=TTLCache(maxsize=DEDUPE_MAXSIZE, ttl=DAY_SECONDS),
        )
        session.state = SessionState.STARTING
        self._sessions[config.session_id] = session

        logger.info(f"Starting live session {config.session_id} on {config.platform.value}")

        session.ready_watcher = asyncio.create_task(
            self._watch_ready(session), name=f"ready-{config.session_id}"
        )
        session.runner = asyncio.create_task(self._run(session), name=f"session-{config.session_id}")
        self._ensure_cleanup_task()

    async def stop_session(self, session_id: str) -> None:
        """Stop a live session. Unknown or already stopped ids are a no-op.

        A call for a session that is already stopping waits for that teardown.
        """
        session = self._sessions.get(session_id)
        if session is not None and session.state is SessionState.STOPPING:
            await session.stopped.wait()
            return
        if session is None or session.closing:
            logger.debug(f"Session {session_id} is not active, nothing to stop")
            return

        await self._teardown(session)

    async def shutdown(self) -> None:
        """Stop every session and the periodic cleanup task."""
        sessions = [s for s in self._sessions.values() if not s.closing]
        if sessions:
            logger.info(f"Stopping {len(sessions)} live session(s)")
            await asyncio.gather(*(self._teardown(s) for s in sessions))

        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def get_session_state(self, session_id: str) -> SessionState:
        session = self._sessions.get(session_id)
        return session.state if session else SessionState.STOPPED

    def get_adapter(self, session_id: str) -> ChatPlatformAdapter | None:
        session = self._sessions.get(session_id)
        return session.adapter if session else None

    @property
    def active_session_ids(self) -> list[str]:
        return [sid for sid, s in self._sessions.items() if not s.closing]

    async def _watch_ready(self, session: LiveSession) -> None:
        await session.adapter.ready.wait()
        if session.state is SessionState.STARTING:
            session.state = SessionState.ACTIVE
            logger.info(f"Session {session.session_id} is active")

    async def _run(self, session: LiveSession) -> None:
        try:
            async for message in session.adapter.listen():
                if session.closing:
                    break
                await self._handle(session, message)
        except AdapterConnectionError as e:
            logger.error(f"Session {session.session_id}: {e}")
            await self._teardown(
                session, SessionEvent(session.session_id, "failed", CONNECTION_FAILURE_REASON)
            )
            return
        except Exception as e:
            logger.exception(f"Session {session.session_id} runner crashed: {e}")
            await self._teardown(
                session, SessionEvent(session.session_id, "failed", f"session ended: {e}")
            )
            return

        if not session.closing:
            logger.info(f"Message stream for session {session.session_id} ended")
            await self._teardown(
                session, SessionEvent(session.session_id, "ended", "message stream ended")
            )

    async def _teardown(self, session: LiveSession, event: SessionEvent | None = None) -> None:
        if session.closing:
            return
        session.state = SessionState.STOPPING
        session_id = session.session_id
        logger.info(f"Stopping live session {session_id}")

        runner = session.runner
        if runner is not None and runner is not asyncio.current_task() and not runner.done():
            if session.pipeline.locked():
                try:
                    await asyncio.wait_for(session.pipeline.acquire(), timeout=self.stop_timeout)
                    session.pipeline.release()
                except asyncio.TimeoutError:
                    logger.warning(
                        f"In-flight message in session {session_id} did not finish "
                        f"within {self.stop_timeout}s, cancelling"
                    )
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass

        watcher = session.ready_watcher
        if watcher is not None and not watcher.done():
            watcher.cancel()

        try:
            await session.adapter.stop()
        except Exception as e:
            logger.error(f"Error stopping {session.config.platform.value} adapter: {e}")

        self.rate_limiter.reset_session(session_id)
        session.state = SessionState.STOPPED
        if self._sessions.get(session_id) is session:
            del self._sessions[session_id]
        session.stopped.set()
        logger.info(f"Session {session_id} stopped")

        if event is not None:
            await self._emit(event)

    async def _emit(self, event: SessionEvent) -> None:
        if self.on_session_event is None:
            logger.warning(f"Session {event.session_id} {event.kind}: {event.reason}")
            return
        try:
            outcome = self.on_session_event(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Session event handler failed: {e}")

    def _ensure_cleanup_task(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="rate-limit-cleanup")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.rate_limiter.cleanup()
            except Exception as e:
                logger.error(f"Rate limit cleanup failed: {e}")

    # ------------------------------------------------------------------
    # Message pipeline
    # ------------------------------------------------------------------

    async def process_message(self, session_id: str, message: ChatMessage) -> InteractionResult | None:
        """Run one message through the session's pipeline.

        Returns None when the message was already processed or the session is
        shutting down. Raises SessionNotFoundError for an unknown session id.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return await self._handle(session, message)

    async def _handle(self, session: LiveSession, message: ChatMessage) -> InteractionResult | None:
        async with session.pipeline:
            if session.closing:
                return None
            if message.message_id in session.processed:
                logger.debug(f"Skipping duplicate message {message.message_id}")
                return None
            session.processed[message.message_id] = True

            try:
                result = await self._evaluate(session, message)
            except Exception as e:
                logger.exception(f"Error processing message {message.message_id}: {e}")
                result = self._new_result(session, message, IntentResult.safe_default())
                result.skip_reason = "error"

            session.messages_processed += 1
            if result.was_auto_responded:
                session.auto_responses += 1
            elif result.skip_reason:
                session.skipped[result.skip_reason] += 1

            await self._persist(result)
            return result

    async def _evaluate(self, session: LiveSession, message: ChatMessage) -> InteractionResult:
        config = session.config
        if not config.agent_enabled:
            result = self._new_result(session, message, None)
            result.skip_reason = "agent_disabled"
            return result

        intent = await self._classify(message.text, config.products)
        logger.info(
            f"Intent detected: {intent.intent.value} (confidence: {intent.confidence:.2f}) "
            f"from {message.username}"
        )

        product = None
        if intent.extracted_product_name:
            product = await self._match_product(message.text, config.products, intent)

        result = self._new_result(session, message, intent)
        result.matched_product = product

        if not should_auto_respond(intent.intent, intent.confidence):
            result.skip_reason = "policy"
            return result

        adapter = session.adapter
        if not adapter.supports_send:
            # Kept for manual delivery; nothing is charged to any gate
            result.agent_response = await self.classifier.generate_response(
                message.text, intent.intent, product
            )
            result.skip_reason = "unsupported"
            return result

        verdict = self.rate_limiter.check_response_allowed(
            config.session_id, message.username, config.rate_limits
        )
        if not verdict.allowed:
            logger.info(f"Rate limit exceeded for {message.username}: {verdict.reason}")
            result.skip_reason = verdict.gate.value if verdict.gate else "rate_limited"
            return result

        reservation = None
        if adapter.send_quota is not None and adapter.send_cost > 0:
            quota = self.rate_limiter.reserve_platform_quota(adapter.send_quota, adapter.send_cost)
            if not quota.allowed:
                logger.info(f"Platform quota rejected reply to {message.username}: {quota.reason}")
                result.skip_reason = "platform"
                return result
            reservation = quota.reservation

        try:
            response = await self.classifier.generate_response(message.text, intent.intent, product)
            result.agent_response = response
            sent = await self._send(adapter, message.username, response)
        except BaseException:
            if reservation is not None:
                self.rate_limiter.release_reservation(reservation)
            raise

        if not sent.success:
            if reservation is not None:
                self.rate_limiter.release_reservation(reservation)
            logger.warning(f"Reply to {message.username} not delivered: {sent.error}")
            result.skip_reason = "unsupported" if sent.permanent else "send_failed"
            return result

        if reservation is not None:
            self.rate_limiter.commit_reservation(reservation)
        self.rate_limiter.record_response(config.session_id, message.username)
        result.was_auto_responded = True
        logger.info(f"Auto-responded to {message.username}: {response}")
        return result

    async def _classify(self, text: str, products: tuple[Product, ...]) -> IntentResult:
        try:
            return await asyncio.wait_for(
                self.classifier.classify(text, products), timeout=self.classify_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Classifier timed out after {self.classify_timeout}s")
        except Exception as e:
            logger.error(f"Classifier failed: {type(e).__name__}: {e}")
        return IntentResult.safe_default()

    async def _match_product(
        self, text: str, products: tuple[Product, ...], intent: IntentResult
    ) -> Product | None:
        try:
            return await self.classifier.match_product(
                text, products, intent.extracted_product_name
            )
        except Exception as e:
            logger.error(f"Product matching failed: {type(e).__name__}: {e}")
            return None

    async def _send(self, adapter: ChatPlatformAdapter, target: str, text: str) -> SendResult:
        try:
            return await asyncio.wait_for(adapter.send(target, text), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            return SendResult.failed(f"send timed out after {self.send_timeout}s")
        except Exception as e:
            logger.error(f"Error sending via {adapter.platform.value}: {e}")
            return SendResult.failed(f"{type(e).__name__}: {e}")

    def _new_result(
        self, session: LiveSession, message: ChatMessage, intent: IntentResult | None
    ) -> InteractionResult:
        return InteractionResult(
            interaction_id=f"interaction_{uuid4().hex}",
            session_id=session.session_id,
            message_id=message.message_id,
            username=message.username,
            user_message=message.text,
            intent=intent.intent if intent else IntentType.OTHER,
            agent_response=None,
            was_auto_responded=False,
            lead_score=intent.lead_score if intent else 0,
            requires_human_review=intent.requires_human_review if intent else False,
        )

    async def _persist(self, result: InteractionResult) -> None:
        try:
            await self.sink.save_interaction(result)
        except Exception as e:
            logger.error(f"Failed to save interaction {result.interaction_id}: {e}")

        if result.intent in LEAD_INTENTS:
            try:
                await self.sink.update_lead_score(
                    result.session_id, result.username, result.lead_score, result.matched_product
                )
            except Exception as e:
                logger.error(f"Failed to update lead score for {result.username}: {e}")

    # ------------------------------------------------------------------
    # Operator actions and stats
    # ------------------------------------------------------------------

    async def send_manual_response(self, session_id: str, username: str, text: str) -> SendResult:
        """Deliver an operator-written reply.

        Skips the policy and the per-user/per-session gates but still draws
        from the platform quota pool.
        """
        session = self._sessions.get(session_id)
        if session is None or session.closing:
            return SendResult.failed(f"Session {session_id} is not active")

        adapter = session.adapter
        if not adapter.supports_send:
            return SendResult.unsupported(adapter.platform.value)

        reservation = None
        if adapter.send_quota is not None and adapter.send_cost > 0:
            quota = self.rate_limiter.reserve_platform_quota(adapter.send_quota, adapter.send_cost)
            if not quota.allowed:
                return SendResult.failed(quota.reason or "platform quota exhausted")
            reservation = quota.reservation

        try:
            sent = await self._send(adapter, username, text)
        except BaseException:
            if reservation is not None:
                self.rate_limiter.release_reservation(reservation)
            raise

        if reservation is not None:
            if sent.success:
                self.rate_limiter.commit_reservation(reservation)
            else:
                self.rate_limiter.release_reservation(reservation)

        if sent.success:
            logger.info(f"Manual response sent to {username}: {text}")
        else:
            logger.error(f"Error sending manual response to {username}: {sent.error}")
        return sent

    def get_session_stats(self, session_id: str) -> dict[str, Any]:
        session = self._sessions.get(session_id)
        stats: dict[str, Any] = {
            "is_active": session is not None and not session.closing,
            "state": (session.state if session else SessionState.STOPPED).value,
            "remaining_responses": self.rate_limiter.get_session_remaining_responses(
                session_id, session.config.rate_limits if session else None
            ),
            "rate_limit_stats": self.rate_limiter.get_stats(),
        }
        if session is not None:
            stats.update(
                platform=session.config.platform.value,
                started_at=session.started_at.isoformat(),
                messages_processed=session.messages_processed,
                auto_responses=session.auto_responses,
                skipped=dict(session.skipped),
            )
        return stats
