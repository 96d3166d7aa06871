"""Auto-response decision policy."""

from __future__ import annotations

from ..models.intent import IntentType

# Intents the agent may answer on its own
AUTO_RESPOND_INTENTS = frozenset({IntentType.PRODUCT_INQUIRY, IntentType.PURCHASE_INTENT})

# Intents always routed to a human
HUMAN_ONLY_INTENTS = frozenset({IntentType.COMPLAINT})

AUTO_RESPOND_MIN_CONFIDENCE = 0.7
LOW_CONFIDENCE_THRESHOLD = 0.5


def should_auto_respond(intent: IntentType, confidence: float) -> bool:
    """Decide whether a classified message qualifies for an automatic reply.

    GENERAL_QUESTION and PRAISE never qualify, whatever the confidence.
    """
    if intent in HUMAN_ONLY_INTENTS or confidence < LOW_CONFIDENCE_THRESHOLD:
        return False

    if intent in AUTO_RESPOND_INTENTS and confidence >= AUTO_RESPOND_MIN_CONFIDENCE:
        return True

    return False
