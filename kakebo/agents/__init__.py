"""AI Agents package."""

from kakebo.agents.gemini_agent import GeminiToolCallingAgent, LanguageModelClient
from kakebo.agents.prompts import KAKEBO_SYSTEM_PROMPT, build_corrections_message

__all__ = [
    "GeminiToolCallingAgent",
    "KAKEBO_SYSTEM_PROMPT",
    "LanguageModelClient",
    "build_corrections_message",
]
