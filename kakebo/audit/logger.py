"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Which tools backed which answer
2. Debugging capability when a tool or the model fails
3. A trail of what the assistant learned from user corrections

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the turn if logging fails)
- Supports correlation IDs to trace all events of one conversation turn
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from kakebo.models.audit import AuditEvent, AuditEventBuilder
from kakebo.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_conversation_received(
        self,
        user_id: str,
        message_length: int,
        history_length: int,
        correlation_id: UUID,
    ) -> None:
        """Log an incoming user message."""
        event = AuditEventBuilder.conversation_received(
            user_id=user_id,
            message_length=message_length,
            history_length=history_length,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_tool_calls_filtered(
        self,
        user_id: str,
        requested: list[str],
        kept: list[str],
        correlation_id: UUID,
    ) -> None:
        """Log tool calls dropped by the orchestration limits."""
        event = AuditEventBuilder.tool_calls_filtered(
            user_id=user_id,
            requested=requested,
            kept=kept,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_tool_executed(
        self,
        tool_name: str,
        duration_ms: int,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.tool_executed(
            tool_name=tool_name,
            duration_ms=duration_ms,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_tool_failed(
        self,
        tool_name: str,
        error_type: str,
        error_message: str,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.tool_failed(
            tool_name=tool_name,
            error_type=error_type,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_tool_output_rejected(
        self,
        tool_name: str,
        errors: list[str],
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        """Log a tool payload that failed validation."""
        event = AuditEventBuilder.tool_output_rejected(
            tool_name=tool_name,
            errors=errors,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_response_generated(
        self,
        user_id: str,
        tools_used: list[str],
        total_tokens: int,
        latency_ms: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.response_generated(
            user_id=user_id,
            tools_used=tools_used,
            total_tokens=total_tokens,
            latency_ms=latency_ms,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_correction_learned(
        self,
        user_id: str,
        merchant: Optional[str],
        category: str,
        rule_created: bool,
        global_vote_incremented: bool,
    ) -> None:
        """Log a merchant rule learned from a user correction."""
        event = AuditEventBuilder.correction_learned(
            user_id=user_id,
            merchant=merchant,
            category=category,
            rule_created=rule_created,
            global_vote_incremented=global_vote_incremented,
        )
        await self.log(event)

    async def log_correction_saved(
        self,
        user_id: str,
        example_id: str,
        old_category: str,
        new_category: str,
    ) -> None:
        event = AuditEventBuilder.correction_saved(
            user_id=user_id,
            example_id=example_id,
            old_category=old_category,
            new_category=new_category,
        )
        await self.log(event)

    async def log_feedback_submitted(
        self,
        user_id: str,
        query: str,
        correct_count: int,
        incorrect_count: int,
    ) -> None:
        event = AuditEventBuilder.feedback_submitted(
            user_id=user_id,
            query=query,
            correct_count=correct_count,
            incorrect_count=incorrect_count,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a conversation turn.
    Pass it through all subsequent operations.
    """
    return uuid4()
