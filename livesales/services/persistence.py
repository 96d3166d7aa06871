"""Where interaction records and lead scores end up."""

from __future__ import annotations

import logging
from typing import Protocol

import asyncpg

from ..models.interaction import InteractionResult, LeadStatus
from ..models.product import Product

logger = logging.getLogger("Persistence")


class InteractionSink(Protocol):
    async def save_interaction(self, result: InteractionResult) -> None: ...

    async def update_lead_score(
        self, session_id: str, username: str, lead_score: int, product: Product | None
    ) -> None: ...


class LoggingSink:
    """Sink used when no database is configured: records go to the log only."""

    async def save_interaction(self, result: InteractionResult) -> None:
        status = "auto-replied" if result.was_auto_responded else f"skipped ({result.skip_reason})"
        logger.info(
            f"[{result.session_id}] {result.username}: {result.intent.value} "
            f"score={result.lead_score} {status}"
        )

    async def update_lead_score(
        self, session_id: str, username: str, lead_score: int, product: Product | None
    ) -> None:
        product_name = product.name if product else "-"
        logger.info(f"[{session_id}] lead {username}: score={lead_score} product={product_name}")


class InteractionRepository:
    """asyncpg-backed sink for the live_session_interactions and live_session_leads tables."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def save_interaction(self, result: InteractionResult) -> None:
        """Insert one interaction. A re-delivered (session, message) pair is ignored."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO live_session_interactions (
                    id, session_id, message_id, username, user_message, intent,
                    agent_response, was_auto_responded, lead_score, matched_product_id,
                    requires_human_review, skip_reason, created_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                ON CONFLICT (session_id, message_id) DO NOTHING
                """,
                result.interaction_id,
                result.session_id,
                result.message_id,
                result.username,
                result.user_message,
                result.intent.value,
                result.agent_response,
                result.was_auto_responded,
                result.lead_score,
                result.matched_product.id if result.matched_product else None,
                result.requires_human_review,
                result.skip_reason,
                result.created_at,
            )

    async def update_lead_score(
        self, session_id: str, username: str, lead_score: int, product: Product | None
    ) -> None:
        """Upsert a lead, keeping the highest score seen for the viewer."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO live_session_leads (session_id, username, lead_score, status, interested_product)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (session_id, username) DO UPDATE SET
                    lead_score         = GREATEST(live_session_leads.lead_score, EXCLUDED.lead_score),
                    interested_product = COALESCE(EXCLUDED.interested_product, live_session_leads.interested_product),
                    updated_at         = NOW()
                """,
                session_id,
                username,
                lead_score,
                LeadStatus.NEW.value,
                product.id if product else None,
            )
