"""
Audit Models for the Kakebo Assistant

Every significant step of a conversation turn and every learning write is
recorded as an audit event. This provides:
1. Traceability of which tools backed which answer
2. Debugging information when a tool or the model fails
3. A record of what the assistant learned from each correction

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""

    # Conversation flow
    CONVERSATION_RECEIVED = "conversation_received"
    TOOL_CALLS_FILTERED = "tool_calls_filtered"
    TOOL_EXECUTED = "tool_executed"
    TOOL_FAILED = "tool_failed"
    TOOL_OUTPUT_REJECTED = "tool_output_rejected"
    RESPONSE_GENERATED = "response_generated"

    # Learning
    CORRECTION_LEARNED = "correction_learned"
    CORRECTION_SAVED = "correction_saved"
    FEEDBACK_SUBMITTED = "feedback_submitted"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(..., description="Type of event")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO)

    # Who and what
    user_id: Optional[str] = Field(
        default=None,
        description="User whose turn or correction this is"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'tool', 'merchant_rule', 'search_feedback')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Tool name, merchant token or record id"
    )

    # Correlation - all events of one user turn share it
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.tool_executed("getBudgetStatus", 42, user_id, correlation_id)
        event = AuditEventBuilder.correction_learned(result, user_id)
    """

    @staticmethod
    def conversation_received(
        user_id: str,
        message_length: int,
        history_length: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONVERSATION_RECEIVED,
            user_id=user_id,
            entity_type="conversation",
            correlation_id=correlation_id,
            description="User message received",
            details={
                "message_length": message_length,
                "history_length": history_length,
            },
            is_user_action=True,
        )

    @staticmethod
    def tool_calls_filtered(
        user_id: str,
        requested: list[str],
        kept: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_CALLS_FILTERED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="tool",
            correlation_id=correlation_id,
            description=f"Tool calls limited from {len(requested)} to {len(kept)}",
            details={"requested": requested, "kept": kept},
        )

    @staticmethod
    def tool_executed(
        tool_name: str,
        duration_ms: int,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_EXECUTED,
            user_id=user_id,
            entity_type="tool",
            entity_id=tool_name,
            correlation_id=correlation_id,
            description=f"Tool executed: {tool_name}",
            details={"duration_ms": duration_ms},
        )

    @staticmethod
    def tool_failed(
        tool_name: str,
        error_type: str,
        error_message: str,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="tool",
            entity_id=tool_name,
            correlation_id=correlation_id,
            description=f"Tool failed: {tool_name} ({error_type})",
            details={"error_type": error_type},
            error_message=error_message,
        )

    @staticmethod
    def tool_output_rejected(
        tool_name: str,
        errors: list[str],
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_OUTPUT_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="tool",
            entity_id=tool_name,
            correlation_id=correlation_id,
            description=f"Tool output rejected with {len(errors)} errors",
            details={"errors": errors},
        )

    @staticmethod
    def response_generated(
        user_id: str,
        tools_used: list[str],
        total_tokens: int,
        latency_ms: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESPONSE_GENERATED,
            user_id=user_id,
            entity_type="conversation",
            correlation_id=correlation_id,
            description=f"Response generated using {len(tools_used)} tools",
            details={
                "tools_used": tools_used,
                "total_tokens": total_tokens,
                "latency_ms": latency_ms,
            },
        )

    @staticmethod
    def correction_learned(
        user_id: str,
        merchant: Optional[str],
        category: str,
        rule_created: bool,
        global_vote_incremented: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CORRECTION_LEARNED,
            user_id=user_id,
            entity_type="merchant_rule",
            entity_id=merchant,
            description=(
                f"Merchant rule {'created' if rule_created else 'updated'}: "
                f"{merchant} -> {category}"
            ),
            details={
                "category": category,
                "rule_created": rule_created,
                "global_vote_incremented": global_vote_incremented,
            },
            is_user_action=True,
        )

    @staticmethod
    def correction_saved(
        user_id: str,
        example_id: str,
        old_category: str,
        new_category: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CORRECTION_SAVED,
            user_id=user_id,
            entity_type="correction_example",
            entity_id=example_id,
            description=f"Correction example saved: {old_category} -> {new_category}",
            details={"old_category": old_category, "new_category": new_category},
            is_user_action=True,
        )

    @staticmethod
    def feedback_submitted(
        user_id: str,
        query: str,
        correct_count: int,
        incorrect_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FEEDBACK_SUBMITTED,
            user_id=user_id,
            entity_type="search_feedback",
            entity_id=query,
            description=f"Search feedback for '{query}'",
            details={
                "correct_count": correct_count,
                "incorrect_count": incorrect_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
