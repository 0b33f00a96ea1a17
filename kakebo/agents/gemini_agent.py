"""
Language Model Client

DESIGN DECISION: The orchestrator talks to the model through the small
LanguageModelClient interface: a role-tagged message list plus a tool
catalogue in, text OR tool calls (plus token usage) out. Gemini is one
implementation; tests use a scripted fake.

CRITICAL BOUNDARIES:
- The model NEVER reads the store. It can only request tools and read
  the validated payloads the executor hands back.
- The model's tool arguments are untrusted input. They are parsed by the
  tool's params model before anything runs.

The LLM is a TRANSLATOR, not an ORACLE.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import uuid4

import google.generativeai as genai
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from kakebo.config import GeminiSettings, get_settings
from kakebo.models.conversation import (
    ChatMessage,
    MessageRole,
    ModelTurn,
    TokenUsage,
    ToolCall,
)
from kakebo.tools.errors import UpstreamError


class LanguageModelClient(ABC):
    """Anything that can answer a conversation, optionally by requesting tools."""

    model_name: str = "unknown"

    @abstractmethod
    async def complete(
        self,
        messages: list[ChatMessage],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> ModelTurn:
        """
        Send the conversation and return the model's turn.

        Args:
            messages: Ordered role-tagged messages
            tools: JSON-schema function declarations, None for a text-only turn

        Returns:
            Direct text or requested tool calls, with token usage

        Raises:
            UpstreamError: If the model service fails
        """
        pass


def _to_gemini_schema(schema: Any) -> Any:
    """JSON-schema dict -> Gemini schema dict (uppercase type names)."""
    if isinstance(schema, dict):
        converted = {}
        for key, value in schema.items():
            if key == "type" and isinstance(value, str):
                converted[key] = value.upper()
            else:
                converted[key] = _to_gemini_schema(value)
        return converted
    if isinstance(schema, list):
        return [_to_gemini_schema(v) for v in schema]
    return schema


def _to_python(value: Any) -> Any:
    """Proto map/repeated values from function-call args -> plain Python."""
    if hasattr(value, "items"):
        return {k: _to_python(v) for k, v in value.items()}
    if isinstance(value, (str, bytes)):
        return value
    if hasattr(value, "__iter__"):
        return [_to_python(v) for v in value]
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class GeminiToolCallingAgent(LanguageModelClient):
    """
    Gemini with function calling.

    - system messages become the system instruction
    - assistant messages become `model` turns (with their function calls)
    - consecutive tool results become one turn of function responses
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self.model_name = self._settings.model_name
        self._logger = structlog.get_logger()
        genai.configure(api_key=self._settings.api_key)

    def _build_model(self, system_instruction: Optional[str], tools: Optional[list[dict]]):
        kwargs: dict[str, Any] = {
            "model_name": self._settings.model_name,
            "generation_config": {
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            },
        }
        if system_instruction:
            kwargs["system_instruction"] = system_instruction
        if tools:
            kwargs["tools"] = [{
                "function_declarations": [_to_gemini_schema(t) for t in tools],
            }]
        return genai.GenerativeModel(**kwargs)

    @staticmethod
    def _to_contents(messages: list[ChatMessage]) -> tuple[Optional[str], list[dict]]:
        system_parts = []
        contents: list[dict] = []

        for message in messages:
            if message.role == MessageRole.SYSTEM:
                system_parts.append(message.content)

            elif message.role == MessageRole.USER:
                contents.append({"role": "user", "parts": [{"text": message.content}]})

            elif message.role == MessageRole.ASSISTANT:
                parts: list[dict] = []
                if message.content:
                    parts.append({"text": message.content})
                for call in message.tool_calls:
                    parts.append({"function_call": {"name": call.name, "args": call.arguments}})
                if parts:
                    contents.append({"role": "model", "parts": parts})

            elif message.role == MessageRole.TOOL:
                part = {
                    "function_response": {
                        "name": message.tool_name,
                        "response": message.tool_result or {},
                    }
                }
                previous = contents[-1] if contents else None
                if previous and previous.get("_tool_results"):
                    previous["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part], "_tool_results": True})

        for content in contents:
            content.pop("_tool_results", None)

        system_instruction = "\n\n".join(system_parts) if system_parts else None
        return system_instruction, contents

    @staticmethod
    def _parse_response(response: Any) -> ModelTurn:
        texts = []
        calls = []

        candidates = getattr(response, "candidates", None) or []
        if candidates:
            for part in candidates[0].content.parts:
                function_call = getattr(part, "function_call", None)
                if function_call and function_call.name:
                    calls.append(ToolCall(
                        call_id=f"call_{uuid4().hex[:12]}",
                        name=function_call.name,
                        arguments=_to_python(function_call.args) if function_call.args else {},
                    ))
                elif getattr(part, "text", None):
                    texts.append(part.text)

        usage_metadata = getattr(response, "usage_metadata", None)
        usage = TokenUsage(
            input_tokens=getattr(usage_metadata, "prompt_token_count", 0) or 0,
            output_tokens=getattr(usage_metadata, "candidates_token_count", 0) or 0,
        )

        return ModelTurn(
            text="".join(texts) or None,
            tool_calls=calls,
            usage=usage,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _generate(self, model: Any, contents: list[dict]) -> Any:
        return await model.generate_content_async(contents)

    async def complete(
        self,
        messages: list[ChatMessage],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> ModelTurn:
        system_instruction, contents = self._to_contents(messages)
        model = self._build_model(system_instruction, tools)

        try:
            response = await self._generate(model, contents)
        except Exception as e:
            self._logger.error("gemini_call_failed", model=self.model_name, error=str(e))
            raise UpstreamError("gemini", str(e)) from e

        turn = self._parse_response(response)
        self._logger.info(
            "gemini_turn_completed",
            model=self.model_name,
            tool_calls=[c.name for c in turn.tool_calls],
            input_tokens=turn.usage.input_tokens,
            output_tokens=turn.usage.output_tokens,
        )
        return turn
