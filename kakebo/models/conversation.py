"""
Conversation Models for the Kakebo Assistant

A conversation is an IMMUTABLE ordered log of role-tagged messages.
Each orchestration step receives the log by value and returns a new log
with its additions; nothing mutates a log in place.

The orchestrator walks a small state machine per user turn:

    IDLE -> AWAITING_MODEL -> DIRECT_REPLY -> DONE
                           -> TOOLS_REQUESTED -> EXECUTE_TOOLS
                              -> VALIDATE_AND_ENHANCE -> AWAITING_SYNTHESIS -> DONE

Every AgentResponse carries the states it passed through.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """Who authored a message."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class OrchestrationState(str, Enum):
    """States of one conversation turn."""
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    DIRECT_REPLY = "direct_reply"
    TOOLS_REQUESTED = "tools_requested"
    EXECUTE_TOOLS = "execute_tools"
    VALIDATE_AND_ENHANCE = "validate_and_enhance"
    AWAITING_SYNTHESIS = "awaiting_synthesis"
    DONE = "done"
    FAILED = "failed"


# =============================================================================
# MESSAGES
# =============================================================================

class ToolCall(BaseModel):
    """A tool invocation requested by the language model."""

    model_config = ConfigDict(frozen=True)

    call_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    """
    One entry in the conversation log.

    Tool results use role TOOL and carry the originating call id and
    tool name; assistant messages may carry the tool calls they requested.
    """

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    tool_result: Optional[dict[str, Any]] = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(
        cls,
        content: str = "",
        tool_calls: tuple[ToolCall, ...] = (),
    ) -> "ChatMessage":
        return cls(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls)

    @classmethod
    def tool(cls, call: ToolCall, result: dict[str, Any]) -> "ChatMessage":
        return cls(
            role=MessageRole.TOOL,
            tool_call_id=call.call_id,
            tool_name=call.name,
            tool_result=result,
        )


class Conversation(BaseModel):
    """Immutable ordered message log."""

    model_config = ConfigDict(frozen=True)

    messages: tuple[ChatMessage, ...] = ()

    def append(self, *messages: ChatMessage) -> "Conversation":
        """Return a new log with the messages added at the end."""
        return Conversation(messages=self.messages + tuple(messages))

    def __len__(self) -> int:
        return len(self.messages)


# =============================================================================
# MODEL TURNS AND METRICS
# =============================================================================

class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ModelTurn(BaseModel):
    """What the language model returned for one call."""

    text: Optional[str] = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)

    @property
    def wants_tools(self) -> bool:
        return len(self.tool_calls) > 0


class AgentMetrics(BaseModel):
    model: str
    latency_ms: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    tool_calls: int = Field(default=0, description="Tool calls the model requested")


class ToolCallLog(BaseModel):
    """Execution record for one tool call."""

    tool_name: str
    call_id: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    execution_time_ms: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    validation_errors: list[str] = Field(default_factory=list)
    validation_warnings: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.validation_errors


class AgentResponse(BaseModel):
    """Final result of one user turn."""

    message: str
    tools_used: list[str] = Field(default_factory=list)
    metrics: AgentMetrics
    tool_logs: list[ToolCallLog] = Field(default_factory=list)
    states: list[OrchestrationState] = Field(default_factory=list)
