"""Intent classification result."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class IntentType(str, Enum):
    PRODUCT_INQUIRY = "PRODUCT_INQUIRY"
    PURCHASE_INTENT = "PURCHASE_INTENT"
    GENERAL_QUESTION = "GENERAL_QUESTION"
    COMPLAINT = "COMPLAINT"
    PRAISE = "PRAISE"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: object) -> IntentType:
        """Map a raw classifier label to an IntentType, OTHER when unknown."""
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.OTHER


# Intents that produce a lead-score update for the persistence collaborator
LEAD_INTENTS = frozenset({IntentType.PRODUCT_INQUIRY, IntentType.PURCHASE_INTENT})


@dataclass(frozen=True)
class IntentResult:
    intent: IntentType
    confidence: float
    lead_score: int
    requires_human_review: bool
    extracted_product_name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence))))
        object.__setattr__(self, "lead_score", min(100, max(0, int(self.lead_score))))

    @classmethod
    def safe_default(cls) -> IntentResult:
        """Result used whenever the classifier is unavailable or returns garbage."""
        return cls(
            intent=IntentType.OTHER,
            confidence=0.0,
            lead_score=0,
            requires_human_review=True,
        )
