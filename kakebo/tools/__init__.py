"""
Tools Package

The data-fetching functions the language model may call, the catalogue
describing them, and the executor that validates every result.
"""

from kakebo.tools.anomalies import detect_anomalies
from kakebo.tools.base import ToolContext
from kakebo.tools.context import (
    UserContext,
    analyze_user_context,
    generate_context_disclaimer,
    is_tool_appropriate_for_user,
)
from kakebo.tools.definitions import TOOL_DEFINITIONS, get_tool_definitions
from kakebo.tools.errors import (
    DataValidationError,
    ErrorCategory,
    ErrorType,
    ToolExecutionError,
    UnknownToolError,
    UpstreamError,
    build_error_payload,
    classify_error,
)
from kakebo.tools.executor import TOOL_REGISTRY, ToolExecutor

__all__ = [
    "detect_anomalies",
    "ToolContext",
    # User context
    "UserContext",
    "analyze_user_context",
    "generate_context_disclaimer",
    "is_tool_appropriate_for_user",
    # Catalogue
    "TOOL_DEFINITIONS",
    "get_tool_definitions",
    # Errors
    "DataValidationError",
    "ErrorCategory",
    "ErrorType",
    "ToolExecutionError",
    "UnknownToolError",
    "UpstreamError",
    "build_error_payload",
    "classify_error",
    # Execution
    "TOOL_REGISTRY",
    "ToolExecutor",
]
