"""
Tool Executor

DESIGN DECISION: The executor is the ONLY path from a model tool call to
data. Whatever happens inside a tool, the model receives one of three
things:

1. The validated payload (camelCase wire dict)
2. The payload annotated with a `_metadata` data-quality note (warnings)
3. An error-shaped payload telling it not to use the data (validation
   failure or exception)

A raw exception NEVER reaches the model.

Calls within one turn are independent, so they run concurrently.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel

from kakebo.audit import AuditLogger
from kakebo.models.conversation import ToolCall, ToolCallLog
from kakebo.models.tools import TOOL_PARAMS, ToolName
from kakebo.tools.anomalies import run_detect_anomalies
from kakebo.tools.base import ToolContext
from kakebo.tools.budget import get_budget_status
from kakebo.tools.errors import UnknownToolError, build_error_payload, classify_error
from kakebo.tools.feedback import submit_search_feedback
from kakebo.tools.predictions import predict_monthly_spending
from kakebo.tools.search import search_expenses
from kakebo.tools.spending import analyze_spending_pattern
from kakebo.tools.trends import get_spending_trends
from kakebo.validation import ToolOutputValidator


ToolFunction = Callable[[ToolContext, BaseModel], Awaitable[BaseModel]]

TOOL_REGISTRY: dict[ToolName, ToolFunction] = {
    ToolName.ANALYZE_SPENDING_PATTERN: analyze_spending_pattern,
    ToolName.GET_BUDGET_STATUS: get_budget_status,
    ToolName.DETECT_ANOMALIES: run_detect_anomalies,
    ToolName.PREDICT_MONTHLY_SPENDING: predict_monthly_spending,
    ToolName.GET_SPENDING_TRENDS: get_spending_trends,
    ToolName.SEARCH_EXPENSES: search_expenses,
    ToolName.SUBMIT_SEARCH_FEEDBACK: submit_search_feedback,
}


class ToolExecutor:
    """
    Runs tool calls and turns every outcome into a model-safe payload.

    Usage:
        executor = ToolExecutor(audit_logger=audit)
        results = await executor.execute_all(calls, ctx, correlation_id)
        for payload, log in results:
            ...
    """

    def __init__(
        self,
        validator: Optional[ToolOutputValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        registry: Optional[dict[ToolName, ToolFunction]] = None,
    ):
        self._validator = validator or ToolOutputValidator()
        self._audit_logger = audit_logger
        self._registry = registry if registry is not None else dict(TOOL_REGISTRY)
        self._logger = structlog.get_logger()

    async def execute(
        self,
        call: ToolCall,
        ctx: ToolContext,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[dict[str, Any], ToolCallLog]:
        """
        Execute one tool call.

        Returns:
            (payload for the model, execution record). Never raises.
        """
        log = ToolCallLog(tool_name=call.name, call_id=call.call_id, arguments=call.arguments)
        start = time.monotonic()

        try:
            try:
                tool = ToolName(call.name)
            except ValueError:
                raise UnknownToolError(call.name)

            function = self._registry.get(tool)
            if function is None:
                raise UnknownToolError(call.name)

            params = TOOL_PARAMS[tool].model_validate(call.arguments)
            payload = await function(ctx, params)

        except Exception as e:
            log.execution_time_ms = int((time.monotonic() - start) * 1000)
            error_type = classify_error(e)
            log.error = str(e) or type(e).__name__
            log.error_type = error_type.value

            self._logger.error(
                "tool_execution_failed",
                tool=call.name,
                error=log.error,
                error_type=error_type.value,
                user_id=ctx.user_id,
            )
            if self._audit_logger:
                await self._audit_logger.log_tool_failed(
                    tool_name=call.name,
                    error_type=error_type.value,
                    error_message=log.error,
                    user_id=ctx.user_id,
                    correlation_id=correlation_id,
                )
            return build_error_payload(call.name, e), log

        log.execution_time_ms = int((time.monotonic() - start) * 1000)

        validation = self._validator.validate(tool, payload)
        log.validation_errors = validation.errors
        log.validation_warnings = validation.warnings

        if not validation.valid and self._audit_logger:
            await self._audit_logger.log_tool_output_rejected(
                tool_name=tool.value,
                errors=validation.errors,
                user_id=ctx.user_id,
                correlation_id=correlation_id,
            )
        elif self._audit_logger:
            await self._audit_logger.log_tool_executed(
                tool_name=tool.value,
                duration_ms=log.execution_time_ms,
                user_id=ctx.user_id,
                correlation_id=correlation_id,
            )

        self._logger.info(
            "tool_executed",
            tool=tool.value,
            ms=log.execution_time_ms,
            valid=validation.valid,
            warnings=len(validation.warnings),
        )

        return self._validator.enhance(tool, payload, validation), log

    async def execute_all(
        self,
        calls: list[ToolCall],
        ctx: ToolContext,
        correlation_id: Optional[UUID] = None,
    ) -> list[tuple[dict[str, Any], ToolCallLog]]:
        """Execute calls concurrently; results keep the order of `calls`."""
        return list(await asyncio.gather(
            *(self.execute(call, ctx, correlation_id) for call in calls)
        ))
