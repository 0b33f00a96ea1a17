"""
Search Feedback Tool

Lets the model record the user's verdict on search results:
"la insulina NO es un vicio" marks that expense incorrect for "vicios".
"""

from kakebo.learning.feedback import SearchFeedbackEngine
from kakebo.models.tools import FeedbackParams, FeedbackPayload
from kakebo.tools.base import ToolContext


async def submit_search_feedback(ctx: ToolContext, params: FeedbackParams) -> FeedbackPayload:
    engine = SearchFeedbackEngine(ctx.store, ctx.policy, ctx.audit_logger)
    result = await engine.submit_search_feedback(
        ctx.user_id,
        params.query,
        correct_expense_ids=params.correct_expense_ids,
        incorrect_expense_ids=params.incorrect_expense_ids,
    )
    return FeedbackPayload(
        success=result.success,
        message=result.message,
        records_submitted=result.records_submitted,
    )
