"""AI critique of a single listing via the Anthropic Messages API.

One blocking round trip per call: no retry, no streaming. The model must
answer with a single JSON object holding the four recommendation arrays;
anything else is a RecommendationError and nothing is persisted.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import anthropic
import structlog

from listing_advisor.config import settings
from listing_advisor.errors import RecommendationError
from listing_advisor.models.contracts import Description, Listing, Recommendations

log = structlog.get_logger("recommendations")

PROMPTS_DIR = Path(__file__).resolve().parent.parent.parent / "prompts"

REQUIRED_FIELDS = (
    "title_improvements",
    "description_issues",
    "conversion_opportunities",
    "commercial_risks",
)

_prompt_cache: dict[str, str] = {}


def _load_prompt(name: str) -> str:
    if name not in _prompt_cache:
        _prompt_cache[name] = (PROMPTS_DIR / name).read_text()
    return _prompt_cache[name]


def _format_price(price: float) -> str:
    return str(int(price)) if float(price).is_integer() else f"{price:.2f}"


def build_user_prompt(listing: Listing, description: Description) -> str:
    return _load_prompt("listing_analysis_user.txt").format(
        title=listing.title,
        price=_format_price(listing.price),
        status=listing.status,
        available_quantity=listing.available_quantity,
        sold_quantity=listing.sold_quantity,
        category=listing.category_id or "Not specified",
        description=description.plain_text,
    )


def _strip_code_fence(text: str) -> str:
    """Remove a markdown code fence wrapped around the whole response."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    text = text.removeprefix("```")
    for lang in ("json", "JSON"):
        text = text.removeprefix(lang)
    text = text.lstrip("\n")
    return text.rsplit("```", 1)[0].strip()


def parse_recommendations(text: str) -> Recommendations:
    """Validate the raw completion against the four-array contract."""
    text = _strip_code_fence(text or "")
    if not text:
        raise RecommendationError("empty_response", "AI provider returned an empty response")

    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecommendationError(
            "malformed_json", f"Failed to parse AI response as JSON: {exc.msg}"
        ) from exc
    if not isinstance(data, dict):
        raise RecommendationError(
            "malformed_json", f"Expected a JSON object, got {type(data).__name__}"
        )

    for name in REQUIRED_FIELDS:
        value = data.get(name)
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise RecommendationError(
                "missing_field", f"AI response field '{name}' is missing or not a list of strings"
            )

    return Recommendations(**{name: data[name] for name in REQUIRED_FIELDS})


class RecommendationClient:
    """Wraps one Anthropic client and the model settings used for critiques."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic | None,
        model: str,
        max_tokens: int = 2048,
    ) -> None:
        self._client = client
        self.model = model
        self._max_tokens = max_tokens

    async def analyze(self, listing: Listing, description: Description) -> Recommendations:
        if self._client is None:
            raise RecommendationError("provider_error", "ANTHROPIC_API_KEY not set")

        log.info("recommendation_request", external_id=listing.external_id, model=self.model)
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self._max_tokens,
                system=_load_prompt("listing_analysis_system.txt"),
                messages=[{"role": "user", "content": build_user_prompt(listing, description)}],
            )
        except anthropic.RateLimitError as e:
            log.warning("recommendation_rate_limited", external_id=listing.external_id)
            raise RecommendationError("provider_error", f"Claude rate limited: {e}") from e
        except anthropic.APIStatusError as e:
            log.error("recommendation_api_error", status=e.status_code)
            raise RecommendationError(
                "provider_error", f"Claude API error ({e.status_code}): {e}"
            ) from e
        except anthropic.APIError as e:
            log.error("recommendation_api_unreachable", error_type=type(e).__name__)
            raise RecommendationError("provider_error", f"Claude API unreachable: {e}") from e

        log.info(
            "recommendation_tokens",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=self.model,
        )

        text = ""
        for block in response.content:
            if hasattr(block, "text"):
                text += block.text
        return parse_recommendations(text)


def create_recommendation_client() -> RecommendationClient:
    client = (
        anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        if settings.anthropic_api_key
        else None
    )
    return RecommendationClient(
        client, model=settings.analysis_model, max_tokens=settings.analysis_max_tokens
    )
