"""Per-message interaction record handed to the persistence collaborator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .intent import IntentType
from .product import Product


class LeadStatus(str, Enum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    CONVERTED = "CONVERTED"
    LOST = "LOST"


@dataclass
class InteractionResult:
    """Outcome of processing one chat message.

    ``skip_reason`` names the stage or gate that prevented an auto-reply
    (``agent_disabled``, ``policy``, ``user``, ``session``, ``platform``,
    ``unsupported``, ``send_failed``, ``error``); it is None when a reply was
    sent or when no reply was ever considered.
    """

    interaction_id: str
    session_id: str
    message_id: str
    username: str
    user_message: str
    intent: IntentType
    agent_response: str | None
    was_auto_responded: bool
    lead_score: int
    matched_product: Product | None = None
    requires_human_review: bool = False
    skip_reason: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
