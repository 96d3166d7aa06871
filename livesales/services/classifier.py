"""Intent classification, product matching and reply generation via OpenRouter."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Sequence
from typing import Any, Protocol

from openai import AsyncOpenAI, RateLimitError
from openai.types.chat import ChatCompletionMessageParam

from ..core.config import FALLBACK_MODELS, LiveSalesSettings
from ..errors import ClassifierError, ConfigurationError
from ..models.intent import IntentResult, IntentType
from ..models.product import Product

LOGGER: logging.Logger = logging.getLogger("IntentClassifier")

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

MAX_RESPONSE_LENGTH = 280
FALLBACK_RESPONSE = "Thanks for your message! I'll make sure the creator sees this."

# Lead score used when the model omits one
DEFAULT_LEAD_SCORE = 50

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>")
_THINK_OPEN = re.compile(r"<think>[\s\S]*$")
_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class IntentClassifier(Protocol):
    async def classify(self, message: str, products: Sequence[Product]) -> IntentResult: ...

    async def match_product(
        self, message: str, products: Sequence[Product], extracted_name: str | None = None
    ) -> Product | None: ...

    async def generate_response(
        self, message: str, intent: IntentType, product: Product | None
    ) -> str: ...


def clean_completion(raw: str) -> str:
    """Strip reasoning blocks and markdown fences from a model reply."""
    text = _THINK_BLOCK.sub("", raw)
    text = _THINK_OPEN.sub("", text)
    return _CODE_FENCE.sub("", text.strip()).strip()


def parse_intent_response(raw: str) -> IntentResult:
    """Parse the model's JSON verdict, falling back to the safe default."""
    match = _JSON_OBJECT.search(clean_completion(raw))
    if not match:
        LOGGER.warning("Classifier reply contained no JSON object")
        return IntentResult.safe_default()

    try:
        data = json.loads(match.group(0))
        if not isinstance(data, dict):
            raise ValueError("verdict is not an object")

        lead_score = data.get("leadScore")
        product_name = data.get("extractedProductName")
        if not isinstance(product_name, str) or product_name.strip().lower() in ("", "null", "none"):
            product_name = None

        return IntentResult(
            intent=IntentType.parse(data.get("intent")),
            confidence=float(data.get("confidence") or 0),
            lead_score=DEFAULT_LEAD_SCORE if lead_score is None else int(lead_score),
            requires_human_review=bool(data.get("requiresHumanReview", False)),
            extracted_product_name=product_name.strip() if product_name else None,
        )
    except (TypeError, ValueError) as e:
        LOGGER.error(f"Error parsing intent response: {e}")
        return IntentResult.safe_default()


def _format_catalog(products: Sequence[Product]) -> str:
    if not products:
        return "(no products listed)"
    return "\n".join(f"- {p.name}: {p.price}" for p in products)


def build_intent_prompt(message: str, products: Sequence[Product]) -> str:
    return f"""You are an assistant helping a content creator sell products during a live stream.

Available products:
{_format_catalog(products)}

User message: "{message}"

Analyze this message and respond with a JSON object containing:
{{
  "intent": "PRODUCT_INQUIRY" | "PURCHASE_INTENT" | "GENERAL_QUESTION" | "COMPLAINT" | "PRAISE" | "OTHER",
  "confidence": 0.0 to 1.0,
  "extractedProductName": "product name if mentioned, otherwise null",
  "leadScore": 0 to 100 (based on purchase likelihood),
  "requiresHumanReview": true if complex or sensitive, false otherwise
}}

Intent definitions:
- PRODUCT_INQUIRY: Asking about product details, price, features
- PURCHASE_INTENT: Expressing desire to buy or asking how to purchase
- GENERAL_QUESTION: Questions about the stream, creator, or unrelated topics
- COMPLAINT: Expressing dissatisfaction or problems
- PRAISE: Positive feedback or compliments
- OTHER: Everything else

Respond ONLY with the JSON object, no other text."""


def build_response_prompt(message: str, intent: IntentType, product: Product | None) -> str:
    if product:
        product_info = (
            f"Product: {product.name}\n"
            f"Description: {product.description}\n"
            f"Price: {product.price}\n"
            f"Link: {product.purchase_link}"
        )
    else:
        product_info = "No specific product context"

    return f"""You are an assistant helping a content creator respond to viewers during a live stream.

User message: "{message}"
Detected intent: {intent.value}
{product_info}

Generate a friendly, concise response (max {MAX_RESPONSE_LENGTH} characters) that:
1. Directly addresses the user's message
2. Provides helpful information about the product (if applicable)
3. Includes the product link if relevant
4. Encourages purchase without being pushy

Respond with ONLY the message text, no extra formatting or quotes."""


def build_match_prompt(message: str, products: Sequence[Product]) -> str:
    catalog = "\n".join(
        f"- ID: {p.id}, Name: {p.name}, Description: {p.description}" for p in products
    )
    return f"""You are an assistant matching live chat messages to products.

Available products:
{catalog}

User message: "{message}"

Which product is the user asking about? Consider direct name mentions,
description keywords and fuzzy matches (e.g. "blue hoodie" matches
"Ocean Blue Pullover Hoodie").

Respond with ONLY the product ID if there's a match, or "NONE" if no clear match."""


def find_product_by_name(name: str, products: Sequence[Product]) -> Product | None:
    """Case-insensitive exact match, then substring match in either direction."""
    wanted = name.casefold().strip()
    if not wanted:
        return None

    for product in products:
        if product.name.casefold() == wanted:
            return product
    for product in products:
        candidate = product.name.casefold()
        if wanted in candidate or candidate in wanted:
            return product
    return None


class OpenRouterIntentClassifier:
    """IntentClassifier backed by OpenRouter chat completions.

    Every public call is bounded by ``timeout`` and never raises: failures
    degrade to ``IntentResult.safe_default()``, the generic fallback reply,
    or no product match.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        fallback_models: Sequence[str] = FALLBACK_MODELS,
        timeout: float = 10.0,
        client: AsyncOpenAI | Any | None = None,
    ) -> None:
        if client is None:
            if not api_key or api_key.strip() == "":
                raise ConfigurationError("OPENROUTER_API_KEY is required but not set")
            client = AsyncOpenAI(base_url=OPENROUTER_BASE_URL, api_key=api_key)

        if not model or model.strip() == "":
            raise ConfigurationError("OPENROUTER_MODEL is required but not set")

        self.client = client
        self.timeout = timeout
        self.models = [model] + [m for m in fallback_models if m != model]

        LOGGER.info(
            f"IntentClassifier initialized: primary={model}, fallbacks={len(self.models) - 1}"
        )

    @classmethod
    def from_settings(cls, settings: LiveSalesSettings) -> OpenRouterIntentClassifier:
        return cls(
            settings.openrouter_api_key,
            settings.openrouter_model,
            timeout=settings.classifier_timeout,
        )

    async def _complete(self, prompt: str, max_tokens: int = 1200) -> str:
        messages: list[ChatCompletionMessageParam] = [{"role": "user", "content": prompt}]
        last_error: Exception | None = None

        for model in self.models:
            try:
                for attempt in range(2):
                    completion = await self.client.chat.completions.create(
                        model=model,
                        max_tokens=max_tokens,
                        messages=messages,
                    )

                    if not completion.choices:
                        LOGGER.warning(f"AI [{model}] attempt {attempt + 1}: no choices")
                        continue

                    raw = completion.choices[0].message.content or ""
                    response = clean_completion(raw)
                    LOGGER.debug(
                        f"AI [{model}] attempt {attempt + 1}: raw={len(raw)}, clean={len(response)}"
                    )
                    if response:
                        return response
            except RateLimitError as e:
                LOGGER.warning(f"AI rate limit on {model}, trying next model")
                last_error = e
                continue

        if last_error:
            raise last_error
        raise ClassifierError("Empty content after all models")

    async def classify(self, message: str, products: Sequence[Product]) -> IntentResult:
        try:
            raw = await asyncio.wait_for(
                self._complete(build_intent_prompt(message, products)), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            LOGGER.error(f"Intent classification timed out after {self.timeout}s")
            return IntentResult.safe_default()
        except Exception as e:
            LOGGER.error(f"Error detecting intent: {type(e).__name__}: {e}")
            return IntentResult.safe_default()

        return parse_intent_response(raw)

    async def match_product(
        self, message: str, products: Sequence[Product], extracted_name: str | None = None
    ) -> Product | None:
        if not products:
            return None

        if extracted_name:
            product = find_product_by_name(extracted_name, products)
            if product is not None:
                return product

        try:
            raw = await asyncio.wait_for(
                self._complete(build_match_prompt(message, products), max_tokens=200),
                timeout=self.timeout,
            )
        except Exception as e:
            LOGGER.error(f"Error matching product: {type(e).__name__}: {e}")
            return None

        product_id = raw.strip().strip("\"'")
        if product_id.upper() == "NONE":
            return None
        return next((p for p in products if p.id == product_id), None)

    async def generate_response(
        self, message: str, intent: IntentType, product: Product | None
    ) -> str:
        try:
            raw = await asyncio.wait_for(
                self._complete(build_response_prompt(message, intent, product), max_tokens=600),
                timeout=self.timeout,
            )
        except Exception as e:
            LOGGER.error(f"Error generating response: {type(e).__name__}: {e}")
            return FALLBACK_RESPONSE

        response = raw.strip().strip("\"'").strip()
        if not response:
            return FALLBACK_RESPONSE
        if len(response) > MAX_RESPONSE_LENGTH:
            response = response[: MAX_RESPONSE_LENGTH - 3] + "..."
        return response
