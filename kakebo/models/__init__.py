"""
Data Models Package

This package contains all Pydantic models used in the Kakebo Assistant.
All data flowing through the system must conform to these schemas.
"""

from kakebo.models.expense import (
    Expense,
    FixedExpense,
    KakeboCategory,
    ScoredExpense,
    UserFinancialSettings,
)
from kakebo.models.learning import (
    CorrectionExample,
    CorrectionExampleMetrics,
    ExampleStats,
    FeedbackResult,
    FeedbackType,
    LearningMetrics,
    LearningResult,
    LearningStats,
    MerchantRule,
    MerchantRuleMetrics,
    Misclassification,
    QueryFeedback,
    QueryIssue,
    RuleScope,
    SearchFeedback,
    SearchFeedbackMetrics,
    VelocityTrend,
)
from kakebo.models.tools import (
    AnomaliesPayload,
    AnomalyItem,
    BudgetStatusPayload,
    CategoryBudgetStatus,
    CategoryPrediction,
    ExpenseSummary,
    FeedbackPayload,
    PredictionPayload,
    SearchHit,
    SearchPayload,
    SpendingPatternPayload,
    ToolName,
    ToolPayload,
    ToolValidationResult,
    TrendDataPoint,
    TrendsPayload,
    parse_tool_payload,
)
from kakebo.models.conversation import (
    AgentMetrics,
    AgentResponse,
    ChatMessage,
    Conversation,
    MessageRole,
    ModelTurn,
    OrchestrationState,
    TokenUsage,
    ToolCall,
    ToolCallLog,
)
from kakebo.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "Expense",
    "FixedExpense",
    "KakeboCategory",
    "ScoredExpense",
    "UserFinancialSettings",
    # Learning models
    "CorrectionExample",
    "CorrectionExampleMetrics",
    "ExampleStats",
    "FeedbackResult",
    "FeedbackType",
    "LearningMetrics",
    "LearningResult",
    "LearningStats",
    "MerchantRule",
    "MerchantRuleMetrics",
    "Misclassification",
    "QueryFeedback",
    "QueryIssue",
    "RuleScope",
    "SearchFeedback",
    "SearchFeedbackMetrics",
    "VelocityTrend",
    # Tool models
    "AnomaliesPayload",
    "AnomalyItem",
    "BudgetStatusPayload",
    "CategoryBudgetStatus",
    "CategoryPrediction",
    "ExpenseSummary",
    "FeedbackPayload",
    "PredictionPayload",
    "SearchHit",
    "SearchPayload",
    "SpendingPatternPayload",
    "ToolName",
    "ToolPayload",
    "ToolValidationResult",
    "TrendDataPoint",
    "TrendsPayload",
    "parse_tool_payload",
    # Conversation models
    "AgentMetrics",
    "AgentResponse",
    "ChatMessage",
    "Conversation",
    "MessageRole",
    "ModelTurn",
    "OrchestrationState",
    "TokenUsage",
    "ToolCall",
    "ToolCallLog",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
