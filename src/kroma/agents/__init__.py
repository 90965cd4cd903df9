"""AI agents for content generation and planning."""

from .base import BaseAgent
from .script import ScriptAgent, ScriptInput

__all__ = ["BaseAgent", "ScriptAgent", "ScriptInput"]
