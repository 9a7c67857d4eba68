"""
Transaction Category Suggestion Client

Asks an OpenAI-compatible chat completions endpoint to place a transaction
into Needs, Wants, or Savings following the 50/30/20 rule. Every failure
is reported as SuggestionUnavailable; callers fall back to the category
the user picked.
"""

from __future__ import annotations

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Optional

import aiohttp

from budgetrule.category_resolver import BudgetCategory, CategorySuggestion
from budgetrule.errors import SuggestionUnavailable, ValidationError
from budgetrule.settings import Settings

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are a financial assistant that helps users categorize their transactions according to the 50/30/20 rule (Needs, Wants, Savings).

Given the following transaction description and amount, determine which category it belongs to and provide a brief explanation.

Transaction Description: {description}
Transaction Amount: {amount}

Respond with JSON only, in the form:
{{"category": "Needs" | "Wants" | "Savings", "explanation": "..."}}
"""


class ChatCompletionSuggester:
    def __init__(
        self,
        api_key: Optional[str],
        api_url: str,
        model: str,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.session = session

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatCompletionSuggester":
        return cls(
            api_key=settings.suggestion_api_key,
            api_url=settings.suggestion_api_url,
            model=settings.suggestion_model,
            timeout_seconds=settings.suggestion_timeout_seconds,
        )

    async def suggest_category(self, description: str, amount: Decimal) -> CategorySuggestion:
        if not self.api_key:
            raise SuggestionUnavailable("Category suggestions are not configured.")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        body = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": PROMPT_TEMPLATE.format(description=description, amount=amount),
                }
            ],
            "temperature": 0.1,
        }

        try:
            if self.session is not None:
                payload = await self._post(self.session, headers, body)
            else:
                async with aiohttp.ClientSession() as session:
                    payload = await self._post(session, headers, body)
        except asyncio.TimeoutError as exc:
            raise SuggestionUnavailable("Category suggestion timed out.") from exc
        except aiohttp.ClientError as exc:
            raise SuggestionUnavailable(f"Category suggestion request failed: {exc}") from exc

        suggestion = parse_suggestion_content(extract_message_content(payload))
        logger.debug("Suggested %s for %r", suggestion.category, description)
        return suggestion

    async def _post(
        self,
        session: aiohttp.ClientSession,
        headers: dict[str, str],
        body: dict[str, Any],
    ) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with session.post(
            self.api_url, headers=headers, json=body, timeout=timeout
        ) as response:
            if response.status >= 400:
                raise SuggestionUnavailable(
                    f"Category suggestion service returned HTTP {response.status}."
                )
            try:
                return await response.json(content_type=None)
            except (json.JSONDecodeError, UnicodeDecodeError, aiohttp.ContentTypeError) as exc:
                raise SuggestionUnavailable("Category suggestion response was not JSON.") from exc


def extract_message_content(payload: Any) -> str:
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise SuggestionUnavailable("Category suggestion response had no choices.") from exc
    if not isinstance(content, str) or not content.strip():
        raise SuggestionUnavailable("Category suggestion response was empty.")
    return content


def parse_suggestion_content(content: str) -> CategorySuggestion:
    cleaned = content.replace("```json", "").replace("```", "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise SuggestionUnavailable("Category suggestion was not valid JSON.") from exc
    if not isinstance(data, dict):
        raise SuggestionUnavailable("Category suggestion was not a JSON object.")

    try:
        category = BudgetCategory.normalize(str(data.get("category") or ""))
    except ValidationError as exc:
        raise SuggestionUnavailable(
            f"Category suggestion returned an unknown category: {data.get('category')!r}"
        ) from exc
    explanation = data.get("explanation")
    return CategorySuggestion(
        category=category,
        explanation=explanation.strip() if isinstance(explanation, str) else "",
    )
