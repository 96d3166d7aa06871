import pytest

from livesales.core.policy import should_auto_respond
from livesales.models import IntentType


@pytest.mark.parametrize(
    ("intent", "confidence", "expected"),
    [
        (IntentType.PURCHASE_INTENT, 0.9, True),
        (IntentType.PURCHASE_INTENT, 0.7, True),
        (IntentType.PRODUCT_INQUIRY, 0.8, True),
        (IntentType.PRODUCT_INQUIRY, 1.0, True),
        (IntentType.PRODUCT_INQUIRY, 0.69, False),
        (IntentType.PRODUCT_INQUIRY, 0.5, False),
        (IntentType.PRODUCT_INQUIRY, 0.4, False),
        (IntentType.PURCHASE_INTENT, 0.0, False),
        (IntentType.COMPLAINT, 0.95, False),
        (IntentType.COMPLAINT, 0.3, False),
        (IntentType.GENERAL_QUESTION, 0.99, False),
        (IntentType.PRAISE, 0.99, False),
        (IntentType.OTHER, 0.9, False),
        (IntentType.OTHER, 0.1, False),
    ],
)
def test_should_auto_respond_truth_table(intent, confidence, expected):
    assert should_auto_respond(intent, confidence) is expected
