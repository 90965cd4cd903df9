"""Anthropic Claude API client wrapper."""

import logging
import time
from typing import Optional

from anthropic import Anthropic, APIError, APIConnectionError, RateLimitError

from ..config import config

logger = logging.getLogger(__name__)


class AnthropicClient:
    """Claude client with exponential backoff on rate limits and dropped connections."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        """Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key. Defaults to ANTHROPIC_API_KEY env var.
            model: Model to use. Defaults to config.default_model.
            max_retries: Maximum number of attempts per request.
            retry_delay: Base delay between retries in seconds.
        """
        self._api_key = api_key or config.anthropic_api_key
        if not self._api_key:
            raise ValueError(
                "Anthropic API key not provided. Set ANTHROPIC_API_KEY env var."
            )

        self._client = Anthropic(api_key=self._api_key)
        self._model = model or config.default_model
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    def create_message(
        self,
        prompt: str,
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> str:
        """Send a single-turn prompt and return the text reply.

        Raises:
            APIError: If the request fails, or still fails after all retries
                for transient errors.
        """
        kwargs = {
            "model": self._model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        for attempt in range(1, self._max_retries + 1):
            logger.debug(f"Claude request attempt {attempt}/{self._max_retries}")
            try:
                response = self._client.messages.create(**kwargs)
            except (RateLimitError, APIConnectionError) as e:
                if attempt == self._max_retries:
                    raise
                delay = self._retry_delay * (2 ** (attempt - 1))
                logger.warning(f"{type(e).__name__}: {e}. Retrying in {delay:.1f}s...")
                time.sleep(delay)
                continue
            except APIError as e:
                logger.error(f"API error: {e}")
                raise

            parts = [block.text for block in response.content if hasattr(block, "text")]
            return "".join(parts)

        # Unreachable: the last attempt either returns or re-raises
        raise RuntimeError("Claude request loop exited without a result")
