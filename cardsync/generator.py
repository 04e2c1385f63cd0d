"""Answer-side content generation through the OpenAI chat completions API.

The generator is a leaf collaborator: it turns (category, text) into text or
raises a GenerationError subclass. Retry and backoff are left to the caller.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional, Union

import openai

from cardsync.errors import (
    GenerationAuthError,
    GenerationError,
    GenerationNetworkError,
    RateLimitedError,
)
from cardsync.types import Category

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


def build_prompt(
    category: Union[Category, str], text: str, secondary_text: Optional[str] = None
) -> str:
    """Prompt for one entry, shaped by its category."""
    category = Category(category)
    if category == Category.VOCABULARY:
        return (
            f'Provide a detailed definition of the word "{text}" followed by two distinct '
            "example sentences that use this word correctly. Format the response as follows:\n"
            "Definition: [definition here]\n\n"
            "Example 1: [first example sentence]\n\n"
            "Example 2: [second example sentence]"
        )
    if category == Category.PHRASES:
        return (
            f'Provide a brief description of the phrase "{text}" and explain when/how it '
            "would typically be used. Format the response as follows:\n"
            "Description: [description here]\n\n"
            "Usage: [usage explanation]"
        )
    if category == Category.DEFINITIONS:
        return f'Provide a comprehensive and clear definition of the term "{text}".'
    if category == Category.QUESTIONS:
        return (
            f'The following is a question: "{text}"\n'
            f"This question would be relevant in contexts related to: "
            f"{secondary_text or 'various topics'}\n"
            "Please acknowledge this question has been recorded."
        )
    if category == Category.BUSINESS:
        return (
            f'The following is a business fact: "{text}"\n'
            f"This fact is particularly applicable to: "
            f"{secondary_text or 'various business contexts'}\n"
            "Please acknowledge this business fact has been recorded."
        )
    return (
        f'The following information has been provided: "{text}"\n'
        "Please acknowledge this information has been recorded."
    )


class ContentGenerator:
    """Generates the answer side of an entry.

    Usage::

        generator = ContentGenerator()  # uses OPENAI_API_KEY env var
        text = generator.generate("vocabulary", "ephemeral")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 300,
        temperature: float = 0.7,
        timeout: float = 30.0,
        client: Optional[Any] = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        if client is not None:
            self._client = client
            return

        resolved_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not resolved_key:
            raise GenerationAuthError("API key not set. Pass api_key= or set OPENAI_API_KEY.")
        self._client = openai.OpenAI(api_key=resolved_key, timeout=timeout, max_retries=0)

    def generate(
        self,
        category: Union[Category, str],
        text: str,
        secondary_text: Optional[str] = None,
    ) -> str:
        prompt = build_prompt(category, text, secondary_text)
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.OpenAIError as exc:
            logger.debug("Content generation failed: %s", exc, exc_info=True)
            raise self._classify_error(exc) from exc

        if not response.choices or not response.choices[0].message.content:
            raise GenerationError("Failed to generate content: empty response")
        return response.choices[0].message.content.strip()

    @staticmethod
    def _classify_error(exc: Exception) -> GenerationError:
        if isinstance(exc, openai.RateLimitError):
            return RateLimitedError(f"Failed to generate content: rate limited: {exc}")
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return GenerationAuthError(f"Failed to generate content: auth failed: {exc}")
        if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
            return GenerationNetworkError(f"Failed to generate content: network: {exc}")
        if isinstance(exc, openai.APIStatusError):
            return GenerationError(
                f"Failed to generate content: API error ({exc.status_code}): {exc}"
            )
        return GenerationError(f"Failed to generate content: {exc}")
