"""Text-generation boundary: prompt in, text out.

The analysis layer only depends on the TextGenerator protocol. The Anthropic
implementation retries rate limits with exponential backoff and turns every
other API failure into GenerationError. It makes no promises about the shape
of the returned text.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

import anthropic

from timemachine.config import DEFAULT_MODEL
from timemachine.exceptions import GenerationError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds


class TextGenerator(Protocol):
    def generate(self, prompt: str, max_tokens: int) -> str: ...


class AnthropicGenerator:
    """TextGenerator backed by the Anthropic Messages API."""

    def __init__(self, client: anthropic.Anthropic, model: str = DEFAULT_MODEL) -> None:
        self._client = client
        self._model = model

    @classmethod
    def from_api_key(cls, api_key: str, model: str = DEFAULT_MODEL) -> AnthropicGenerator:
        return cls(anthropic.Anthropic(api_key=api_key), model=model)

    def generate(self, prompt: str, max_tokens: int) -> str:
        for attempt in range(MAX_RETRIES):
            try:
                response = self._client.messages.create(
                    model=self._model,
                    max_tokens=max_tokens,
                    messages=[{"role": "user", "content": prompt}],
                )
                break
            except anthropic.RateLimitError as e:
                if attempt < MAX_RETRIES - 1:
                    delay = RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(f"Rate limited, retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    raise GenerationError(
                        f"Rate limited after {MAX_RETRIES} attempts"
                    ) from e
            except anthropic.APIError as e:
                logger.error(f"API error during generation: {e}")
                raise GenerationError(f"Text generation failed: {e}") from e

        if not response.content:
            logger.warning("Empty response from text generation")
            return ""

        return "".join(
            getattr(block, "text", "") for block in response.content
        ).strip()
