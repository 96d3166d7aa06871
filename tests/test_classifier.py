import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import HOODIE
from openai import RateLimitError

from livesales.errors import ConfigurationError
from livesales.models import IntentType, Price, Product
from livesales.services.classifier import (
    FALLBACK_RESPONSE,
    OpenRouterIntentClassifier,
    find_product_by_name,
    parse_intent_response,
)

MUG = Product(id="prod-2", name="Logo Mug", price=Price(amount_micros=15_000_000))


def completion(content: str | None):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def make_classifier(*responses, timeout: float = 1.0):
    create = AsyncMock(side_effect=list(responses))
    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    classifier = OpenRouterIntentClassifier(
        "",
        "primary/model",
        fallback_models=["backup/model"],
        timeout=timeout,
        client=client,
    )
    return classifier, create


def rate_limit_error() -> RateLimitError:
    request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
    return RateLimitError(
        "rate limited", response=httpx.Response(429, request=request), body=None
    )


def test_parse_plain_json():
    result = parse_intent_response(
        '{"intent": "PURCHASE_INTENT", "confidence": 0.92, "extractedProductName": "Blue Hoodie",'
        ' "leadScore": 88, "requiresHumanReview": false}'
    )

    assert result.intent is IntentType.PURCHASE_INTENT
    assert result.confidence == pytest.approx(0.92)
    assert result.extracted_product_name == "Blue Hoodie"
    assert result.lead_score == 88
    assert result.requires_human_review is False


def test_parse_strips_reasoning_and_fences():
    raw = (
        "<think>the user wants a price</think>\n"
        '```json\n{"intent": "PRODUCT_INQUIRY", "confidence": 0.8, "leadScore": 60,'
        ' "extractedProductName": null}\n```'
    )

    result = parse_intent_response(raw)

    assert result.intent is IntentType.PRODUCT_INQUIRY
    assert result.extracted_product_name is None


def test_parse_clamps_and_defaults():
    result = parse_intent_response('{"intent": "shouting", "confidence": 7}')

    assert result.intent is IntentType.OTHER
    assert result.confidence == 1.0
    assert result.lead_score == 50

    assert parse_intent_response('{"intent": "PRAISE", "leadScore": 250}').lead_score == 100


@pytest.mark.parametrize("raw", ["not json at all", "{broken", '{"confidence": "high"}'])
def test_parse_garbage_returns_safe_default(raw):
    result = parse_intent_response(raw)

    assert result.intent is IntentType.OTHER
    assert result.confidence == 0
    assert result.lead_score == 0
    assert result.requires_human_review is True


def test_find_product_by_name():
    products = [MUG, HOODIE]

    assert find_product_by_name("BLUE HOODIE", products) == HOODIE
    assert find_product_by_name("hoodie", products) == HOODIE
    assert find_product_by_name("the logo mug please", products) == MUG
    assert find_product_by_name("socks", products) is None
    assert find_product_by_name("  ", products) is None


def test_missing_model_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        OpenRouterIntentClassifier("key", "")


def test_missing_api_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        OpenRouterIntentClassifier("", "primary/model")


async def test_classify_sends_catalog_to_primary_model():
    classifier, create = make_classifier(
        completion('{"intent": "PRODUCT_INQUIRY", "confidence": 0.8, "leadScore": 70}')
    )

    result = await classifier.classify("how much is the blue hoodie", [HOODIE])

    assert result.intent is IntentType.PRODUCT_INQUIRY
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "primary/model"
    prompt = kwargs["messages"][0]["content"]
    assert "Blue Hoodie: $49.99 USD" in prompt
    assert "how much is the blue hoodie" in prompt


async def test_rate_limited_model_falls_back():
    classifier, create = make_classifier(
        rate_limit_error(),
        completion('{"intent": "PURCHASE_INTENT", "confidence": 0.9, "leadScore": 90}'),
    )

    result = await classifier.classify("I want to buy", [HOODIE])

    assert result.intent is IntentType.PURCHASE_INTENT
    assert [c.kwargs["model"] for c in create.await_args_list] == ["primary/model", "backup/model"]


async def test_empty_completions_give_safe_default():
    classifier, _ = make_classifier(*[completion("")] * 4)

    result = await classifier.classify("hello", [])

    assert result.intent is IntentType.OTHER
    assert result.requires_human_review is True


async def test_classify_timeout_gives_safe_default():
    async def slow(**kwargs):
        await asyncio.sleep(5)

    classifier, create = make_classifier(timeout=0.05)
    create.side_effect = slow

    result = await classifier.classify("hello", [HOODIE])

    assert result.intent is IntentType.OTHER
    assert result.confidence == 0
    assert result.requires_human_review is True


async def test_match_product_prefers_local_name_match():
    classifier, create = make_classifier()

    product = await classifier.match_product("how much?", [MUG, HOODIE], "blue hoodie")

    assert product == HOODIE
    create.assert_not_awaited()


async def test_match_product_asks_model_for_fuzzy_match():
    classifier, _ = make_classifier(completion("prod-2"), completion("NONE"))

    assert await classifier.match_product("the coffee cup", [MUG, HOODIE], "cup") == MUG
    assert await classifier.match_product("the socks", [MUG, HOODIE], "socks") is None


async def test_match_product_without_catalog():
    classifier, create = make_classifier()

    assert await classifier.match_product("hoodie?", [], "hoodie") is None
    create.assert_not_awaited()


async def test_generate_response_is_trimmed_and_bounded():
    classifier, create = make_classifier(completion('"' + "x" * 400 + '"'))

    response = await classifier.generate_response("price?", IntentType.PRODUCT_INQUIRY, HOODIE)

    assert len(response) == 280
    assert response.endswith("...")
    prompt = create.await_args.kwargs["messages"][0]["content"]
    assert "https://shop.example.com/blue-hoodie" in prompt


async def test_generate_response_falls_back_on_error():
    classifier, create = make_classifier()
    create.side_effect = RuntimeError("boom")

    response = await classifier.generate_response("price?", IntentType.PRODUCT_INQUIRY, None)

    assert response == FALLBACK_RESPONSE
