"""Base agent abstraction."""

import logging
from abc import ABC, abstractmethod
from typing import Generic, TypeVar, Optional

from ..services.anthropic import AnthropicClient
from ..config import config

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class BaseAgent(ABC, Generic[InputT, OutputT]):
    """Abstract base class for Claude-backed agents.

    Subclasses define a name, a system prompt and ``run``. The Anthropic
    client is created on first use so agents can be built without
    credentials in hand.
    """

    def __init__(
        self,
        client: Optional[AnthropicClient] = None,
        model: Optional[str] = None,
    ) -> None:
        """Initialize the agent.

        Args:
            client: AnthropicClient instance. Created lazily if not provided.
            model: Model to use. Defaults to config.default_model.
        """
        self._model = model or config.default_model
        self._client = client
        self._logger = logging.getLogger(f"{__name__}.{self.name}")

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the agent's name."""
        ...

    @property
    @abstractmethod
    def system_prompt(self) -> str:
        """Return the system prompt for this agent."""
        ...

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    @property
    def client(self) -> AnthropicClient:
        if self._client is None:
            self._client = AnthropicClient(model=self._model)
        return self._client

    @abstractmethod
    def run(self, input_data: InputT) -> OutputT:
        """Execute the agent's main task."""
        ...

    def _create_message(
        self,
        prompt: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> str:
        """Send ``prompt`` with this agent's system prompt and return the reply."""
        self._logger.debug(f"Creating message with prompt length: {len(prompt)}")
        response = self.client.create_message(
            prompt=prompt,
            max_tokens=max_tokens,
            system=self.system_prompt,
            temperature=temperature,
        )
        self._logger.debug(f"Received response of length: {len(response)}")
        return response

    @staticmethod
    def _extract_json(response: str) -> str:
        """Extract JSON from a response that may contain markdown or other text."""
        for fence in ("```json", "```"):
            if fence in response:
                start = response.find(fence) + len(fence)
                end = response.find("```", start)
                if end > start:
                    return response[start:end].strip()

        # Raw JSON object or array: scan to the matching bracket
        for start_char, end_char in [("{", "}"), ("[", "]")]:
            start = response.find(start_char)
            if start != -1:
                depth = 0
                for i, char in enumerate(response[start:], start):
                    if char == start_char:
                        depth += 1
                    elif char == end_char:
                        depth -= 1
                        if depth == 0:
                            return response[start:i + 1]

        return response.strip()
