"""Script agent: breaks a video concept into scene descriptions."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from .base import BaseAgent

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a film director breaking a short video concept into scenes.
Each scene becomes one AI-generated clip of about 8 seconds, so describe a single
continuous shot: subject, action, setting, camera movement, lighting and mood.
Keep the main character's appearance consistent across scenes.

Output valid JSON only, with no additional text or markdown formatting:
{"scenes": [{"description": "..."}, ...]}"""


@dataclass
class ScriptInput:
    """Input data for the script agent."""

    concept: str
    num_scenes: Optional[int] = None


class ScriptAgent(BaseAgent[ScriptInput, list[str]]):
    """Agent turning a concept into an ordered list of scene descriptions."""

    DEFAULT_SCENES = 4

    @property
    def name(self) -> str:
        return "ScriptAgent"

    @property
    def system_prompt(self) -> str:
        return SYSTEM_PROMPT

    def run(self, input_data: ScriptInput) -> list[str]:
        """Generate scene descriptions for the concept.

        Raises:
            ValueError: If the response cannot be parsed into scenes.
        """
        self._logger.info(f"Breaking down script: '{input_data.concept[:60]}'")

        response = self._create_message(
            prompt=self._build_prompt(input_data),
            max_tokens=4096,
            temperature=0.8,  # Higher temperature for creative output
        )
        descriptions = self._parse_response(response)

        self._logger.info(f"Generated {len(descriptions)} scenes")
        return descriptions

    def _build_prompt(self, input_data: ScriptInput) -> str:
        count = input_data.num_scenes or self.DEFAULT_SCENES
        return "\n".join([
            "Break the following video concept into scenes:",
            "",
            f"CONCEPT: {input_data.concept}",
            f"NUMBER OF SCENES: {count}",
            "",
            "Each description must be self-contained; it is sent verbatim to a video model.",
        ])

    def _parse_response(self, response: str) -> list[str]:
        json_str = self._extract_json(response)

        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            self._logger.error(f"Failed to parse JSON: {e}")
            self._logger.debug(f"Raw response: {response}")
            raise ValueError(f"Invalid JSON in response: {e}")

        scenes_data = data.get("scenes", data) if isinstance(data, dict) else data
        if not isinstance(scenes_data, list):
            raise ValueError("Response does not contain a scenes array")

        descriptions: list[str] = []
        for item in scenes_data:
            if isinstance(item, str):
                text = item
            elif isinstance(item, dict):
                text = item.get("description") or item.get("prompt") or ""
            else:
                text = ""
            if text.strip():
                descriptions.append(text.strip())

        if not descriptions:
            raise ValueError("Response contained no scene descriptions")
        return descriptions
