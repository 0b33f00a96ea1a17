"""
Main Orchestrator for the Kakebo Assistant

This module ties together all the components and defines the end-to-end
flow of one conversation turn:

    user message → model (with tool catalogue) → direct reply
                                               → tools → validate → model → reply

DESIGN DECISION: The orchestrator enforces the boundaries:
- The model never sees data that did not pass the output validator
- A tool failure reaches the model as an error-shaped payload, and the
  turn still ends with a plain-language answer
- Every step is audited under one correlation id

This is the "glue" that ensures the system answers honestly even when
individual components fail.
"""

import time
from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from kakebo.agents import (
    GeminiToolCallingAgent,
    KAKEBO_SYSTEM_PROMPT,
    LanguageModelClient,
    build_corrections_message,
)
from kakebo.audit import AuditLogger, create_correlation_id
from kakebo.config import PolicySettings, SearchSettings, get_settings
from kakebo.learning import ExampleRetriever, format_examples_for_prompt
from kakebo.models.conversation import (
    AgentMetrics,
    AgentResponse,
    ChatMessage,
    Conversation,
    MessageRole,
    OrchestrationState,
    TokenUsage,
    ToolCall,
)
from kakebo.models.tools import ToolName
from kakebo.services.storage import GoogleSheetsStore, InMemoryStore
from kakebo.tools import (
    ToolContext,
    ToolExecutor,
    UpstreamError,
    analyze_user_context,
    generate_context_disclaimer,
    get_tool_definitions,
    is_tool_appropriate_for_user,
)


logger = structlog.get_logger(__name__)


NO_RESPONSE_MESSAGE = "No pude generar una respuesta."
NO_FINAL_RESPONSE_MESSAGE = "No pude generar una respuesta final."
FAILURE_MESSAGE = (
    "Lo siento, hubo un error al procesar tu solicitud. Por favor, inténtalo de nuevo."
)
INVALID_HISTORY_MESSAGE = (
    "No puedo continuar esta conversación porque el historial no es válido. "
    "Por favor, empieza una conversación nueva."
)

# Pairs that answer the same question; the second one is dropped
FORBIDDEN_COMBINATIONS: list[tuple[ToolName, ToolName]] = [
    (ToolName.PREDICT_MONTHLY_SPENDING, ToolName.GET_SPENDING_TRENDS),
]

# Tool -> the tool that gives it context
REQUIRED_COMPANIONS: dict[ToolName, ToolName] = {
    ToolName.PREDICT_MONTHLY_SPENDING: ToolName.GET_BUDGET_STATUS,
}

DEFAULT_INPUT_COST_PER_1M = 0.075
DEFAULT_OUTPUT_COST_PER_1M = 0.30


# =============================================================================
# TURN GUARDS
# =============================================================================

class ToolCallFilterResult(BaseModel):
    """Tool calls that survived the per-turn limits."""

    calls: list[ToolCall] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def filtered(self) -> bool:
        return len(self.reasons) > 0


def validate_tool_calls(calls: list[ToolCall], max_tools: int = 3) -> ToolCallFilterResult:
    """
    Apply the per-turn tool limits.

    1. At most `max_tools` calls, kept in the model's order
    2. Redundant pairs lose their second member
    3. Missing companions only produce a warning
    """
    result = ToolCallFilterResult(calls=list(calls))

    if len(result.calls) > max_tools:
        result.reasons.append(f"Limited to {max_tools} tools for performance")
        result.warnings.append(f"Reduced from {len(result.calls)} to {max_tools} tools")
        result.calls = result.calls[:max_tools]

    for first, second in FORBIDDEN_COMBINATIONS:
        names = {c.name for c in result.calls}
        if first.value in names and second.value in names:
            result.reasons.append(f"Removed redundant tool: {second.value}")
            result.warnings.append(
                f"{first.value} and {second.value} are redundant - removed {second.value}"
            )
            result.calls = [c for c in result.calls if c.name != second.value]

    names = {c.name for c in result.calls}
    for main, companion in REQUIRED_COMPANIONS.items():
        if main.value in names and companion.value not in names:
            result.warnings.append(
                f"{main.value} called without companion {companion.value} - context may be incomplete"
            )

    return result


def validate_conversation_history(history: list[ChatMessage], max_messages: int = 50) -> None:
    """
    Check prior turns before they are sent to the model.

    Raises:
        ValueError: Too many messages, a role other than user/assistant,
                    or an empty message
    """
    if len(history) > max_messages:
        raise ValueError(f"Conversation history too long (max {max_messages} messages)")

    for message in history:
        if message.role not in (MessageRole.USER, MessageRole.ASSISTANT):
            raise ValueError(f"Invalid role in history: {message.role.value}")
        if not message.content or not message.content.strip():
            raise ValueError("Invalid message in history (missing role or content)")


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    input_cost_per_1m: float = DEFAULT_INPUT_COST_PER_1M,
    output_cost_per_1m: float = DEFAULT_OUTPUT_COST_PER_1M,
) -> float:
    """USD cost of a turn from per-million token pricing."""
    cost = (
        input_tokens * input_cost_per_1m / 1_000_000
        + output_tokens * output_cost_per_1m / 1_000_000
    )
    return round(cost, 6)


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class FunctionCallingOrchestrator:
    """
    Answers one user turn with tool calling.

    Flow:
    1. Validate history, build the conversation (system prompt, user
       context disclaimer, correction examples, history, message)
    2. First model call with the tool catalogue
    3. No tool calls → direct reply (DONE)
    4. Filter tool calls, execute them concurrently, validate every result
    5. Second model call with the enhanced results → final reply

    Any unexpected failure ends the turn with a fixed apology; the model's
    tool errors never end it.
    """

    def __init__(
        self,
        model_client: LanguageModelClient,
        audit_logger: Optional[AuditLogger] = None,
        policy: Optional[PolicySettings] = None,
        search: Optional[SearchSettings] = None,
        executor: Optional[ToolExecutor] = None,
        example_retriever: Optional[ExampleRetriever] = None,
        input_cost_per_1m: float = DEFAULT_INPUT_COST_PER_1M,
        output_cost_per_1m: float = DEFAULT_OUTPUT_COST_PER_1M,
    ):
        self._model = model_client
        self._audit_logger = audit_logger
        self._policy = policy or PolicySettings()
        self._search = search or SearchSettings()
        self._executor = executor or ToolExecutor(audit_logger=audit_logger)
        self._example_retriever = example_retriever
        self._input_cost = input_cost_per_1m
        self._output_cost = output_cost_per_1m
        self._tools = get_tool_definitions()

    @property
    def model_name(self) -> str:
        return getattr(self._model, "model_name", "unknown")

    def _metrics(self, started: float, usage: TokenUsage, tool_calls: int) -> AgentMetrics:
        return AgentMetrics(
            model=self.model_name,
            latency_ms=int((time.monotonic() - started) * 1000),
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            cost_usd=calculate_cost(
                usage.input_tokens, usage.output_tokens, self._input_cost, self._output_cost
            ),
            tool_calls=tool_calls,
        )

    async def _build_conversation(
        self,
        user_text: str,
        history: list[ChatMessage],
        store,
        user_id: str,
        today: date,
    ) -> Conversation:
        user_context = await analyze_user_context(store, user_id, today)
        conversation = Conversation().append(
            ChatMessage.system(KAKEBO_SYSTEM_PROMPT),
            ChatMessage.system(generate_context_disclaimer(user_context)),
        )

        retriever = self._example_retriever or ExampleRetriever(store, self._audit_logger)
        examples = await retriever.get_relevant_examples(
            user_id,
            limit=self._policy.few_shot_limit,
            min_confidence=self._policy.few_shot_min_confidence,
        )
        if examples:
            conversation = conversation.append(
                ChatMessage.system(build_corrections_message(format_examples_for_prompt(examples)))
            )
            logger.debug("correction_examples_loaded", user_id=user_id, count=len(examples))

        return conversation.append(*history, ChatMessage.user(user_text))

    async def process_function_calling(
        self,
        user_text: str,
        history: list[ChatMessage],
        store,
        user_id: str,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AgentResponse:
        """
        Answer one user message.

        Args:
            user_text: The new user message
            history: Prior user/assistant messages, oldest first
            store: Expense and learning store for this user
            user_id: The requesting user
            today: Reference date for every period computation

        Returns:
            AgentResponse with the final message, tools used and metrics.
            Never raises.
        """
        correlation_id = correlation_id or create_correlation_id()
        today = today or date.today()
        started = time.monotonic()
        usage = TokenUsage()
        states = [OrchestrationState.IDLE]
        requested_count = 0

        logger.info(
            "turn_started",
            user_id=user_id,
            message_length=len(user_text),
            history_length=len(history),
        )
        if self._audit_logger:
            await self._audit_logger.log_conversation_received(
                user_id=user_id,
                message_length=len(user_text),
                history_length=len(history),
                correlation_id=correlation_id,
            )

        try:
            validate_conversation_history(history, self._policy.max_history_messages)
        except ValueError as e:
            logger.warning("conversation_history_rejected", user_id=user_id, error=str(e))
            states.append(OrchestrationState.FAILED)
            return AgentResponse(
                message=INVALID_HISTORY_MESSAGE,
                metrics=self._metrics(started, usage, 0),
                states=states,
            )

        try:
            conversation = await self._build_conversation(
                user_text, history, store, user_id, today
            )

            # Step 1: model decides between a direct reply and tools
            states.append(OrchestrationState.AWAITING_MODEL)
            first = await self._model.complete(list(conversation.messages), self._tools)
            usage = usage + first.usage

            if not first.wants_tools:
                states.extend([OrchestrationState.DIRECT_REPLY, OrchestrationState.DONE])
                metrics = self._metrics(started, usage, 0)
                await self._log_response(user_id, [], metrics, correlation_id)
                return AgentResponse(
                    message=first.text or NO_RESPONSE_MESSAGE,
                    metrics=metrics,
                    states=states,
                )

            # Step 2: limit what runs
            states.append(OrchestrationState.TOOLS_REQUESTED)
            requested_count = len(first.tool_calls)
            selection = validate_tool_calls(first.tool_calls, self._policy.max_tools_per_call)
            for warning in selection.warnings:
                logger.warning("tool_call_limit_warning", user_id=user_id, warning=warning)
            if selection.filtered and self._audit_logger:
                await self._audit_logger.log_tool_calls_filtered(
                    user_id=user_id,
                    requested=[c.name for c in first.tool_calls],
                    kept=[c.name for c in selection.calls],
                    correlation_id=correlation_id,
                )

            user_context = None
            for call in selection.calls:
                if call.name in (
                    ToolName.DETECT_ANOMALIES.value,
                    ToolName.GET_SPENDING_TRENDS.value,
                    ToolName.PREDICT_MONTHLY_SPENDING.value,
                ):
                    user_context = user_context or await analyze_user_context(store, user_id, today)
                    hint = is_tool_appropriate_for_user(call.name, user_context)
                    if not hint.appropriate:
                        logger.info(
                            "tool_not_recommended", tool=call.name, reason=hint.reason
                        )

            # Step 3: execute and validate
            ctx = ToolContext(
                store=store,
                user_id=user_id,
                today=today,
                search=self._search,
                policy=self._policy,
                audit_logger=self._audit_logger,
            )
            states.append(OrchestrationState.EXECUTE_TOOLS)
            results = await self._executor.execute_all(selection.calls, ctx, correlation_id)
            states.append(OrchestrationState.VALIDATE_AND_ENHANCE)

            tool_logs = [log for _, log in results]
            logger.debug(
                "tools_completed",
                user_id=user_id,
                succeeded=sum(1 for log in tool_logs if log.succeeded),
                failed=sum(1 for log in tool_logs if not log.succeeded),
            )

            # Step 4: synthesis from validated results only
            conversation = conversation.append(
                ChatMessage.assistant(first.text or "", tuple(selection.calls)),
                *(ChatMessage.tool(call, payload) for call, (payload, _) in zip(selection.calls, results)),
            )
            states.append(OrchestrationState.AWAITING_SYNTHESIS)
            final = await self._model.complete(list(conversation.messages), None)
            usage = usage + final.usage

            tools_used = [c.name for c in selection.calls]
            metrics = self._metrics(started, usage, requested_count)
            states.append(OrchestrationState.DONE)

            logger.info(
                "turn_completed",
                user_id=user_id,
                latency_ms=metrics.latency_ms,
                total_tokens=metrics.total_tokens,
                cost_usd=metrics.cost_usd,
                tools_used=tools_used,
            )
            await self._log_response(user_id, tools_used, metrics, correlation_id)

            return AgentResponse(
                message=final.text or NO_FINAL_RESPONSE_MESSAGE,
                tools_used=tools_used,
                metrics=metrics,
                tool_logs=tool_logs,
                states=states,
            )

        except Exception as e:
            states.append(OrchestrationState.FAILED)
            metrics = self._metrics(started, usage, requested_count)
            logger.error(
                "turn_failed",
                user_id=user_id,
                error=str(e),
                latency_ms=metrics.latency_ms,
            )
            if self._audit_logger:
                if isinstance(e, UpstreamError):
                    await self._audit_logger.log_external_service_error(
                        service=e.service,
                        error_message=str(e),
                        correlation_id=correlation_id,
                    )
                else:
                    await self._audit_logger.log_error(
                        error_type=type(e).__name__,
                        error_message=str(e),
                        details={"user_id": user_id},
                        correlation_id=correlation_id,
                    )
            return AgentResponse(message=FAILURE_MESSAGE, metrics=metrics, states=states)

    async def _log_response(
        self,
        user_id: str,
        tools_used: list[str],
        metrics: AgentMetrics,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_response_generated(
                user_id=user_id,
                tools_used=tools_used,
                total_tokens=metrics.total_tokens,
                latency_ms=metrics.latency_ms,
                correlation_id=correlation_id,
            )


def create_app_components(
    use_storage: bool = True,
) -> tuple[FunctionCallingOrchestrator, object, AuditLogger]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use Google Sheets storage.
                    Set to False to run against the in-memory store.

    Returns:
        (orchestrator, store, audit_logger)
    """
    settings = get_settings()
    store = None

    if use_storage:
        try:
            store = GoogleSheetsStore()
            audit_logger = AuditLogger(store)
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            store = None

    if store is None:
        store = InMemoryStore()
        audit_logger = AuditLogger(store)

    gemini = settings.gemini
    orchestrator = FunctionCallingOrchestrator(
        model_client=GeminiToolCallingAgent(gemini),
        audit_logger=audit_logger,
        policy=settings.policy,
        search=settings.search,
        input_cost_per_1m=gemini.input_cost_per_1m,
        output_cost_per_1m=gemini.output_cost_per_1m,
    )

    return orchestrator, store, audit_logger
