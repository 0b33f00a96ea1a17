"""Tests for the audit logger."""

import pytest

from kakebo.audit import AuditLogger, create_correlation_id
from kakebo.models.audit import AuditEventBuilder, AuditEventType
from kakebo.services.storage import ConnectionError


class TestAuditLogger:
    """Tests for AuditLogger persistence and failure handling."""

    @pytest.mark.asyncio
    async def test_events_are_persisted(self, store):
        logger = AuditLogger(store)
        correlation_id = create_correlation_id()

        await logger.log_tool_executed("getBudgetStatus", 12, "user-1", correlation_id)
        await logger.log_response_generated("user-1", ["getBudgetStatus"], 300, 950, correlation_id)

        events = await store.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.TOOL_EXECUTED,
            AuditEventType.RESPONSE_GENERATED,
        ]
        assert events[1].details["tools_used"] == ["getBudgetStatus"]

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self, store):
        """A failed audit write never breaks the turn."""
        store.fail_on("append_event", ConnectionError("sheet unavailable"))
        logger = AuditLogger(store)

        written = await logger.log_error("tool_error", "boom")

        assert written is None
        assert store.audit_events == []

    @pytest.mark.asyncio
    async def test_log_returns_write_status(self, store):
        store.fail_on("append_event", ConnectionError("sheet unavailable"))
        logger = AuditLogger(store)

        event = AuditEventBuilder.external_service_error("gemini", "timeout")
        assert await logger.log(event) is False

    @pytest.mark.asyncio
    async def test_without_storage_logs_locally(self):
        event = AuditEventBuilder.external_service_error("gemini", "timeout")
        assert await AuditLogger().log(event) is True

    @pytest.mark.asyncio
    async def test_feedback_event(self, store):
        await AuditLogger(store).log_feedback_submitted("user-1", "vicios", 0, 2)

        event = store.audit_events[0]
        assert event.event_type == AuditEventType.FEEDBACK_SUBMITTED
        assert event.user_id == "user-1"
