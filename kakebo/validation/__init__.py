"""Validation package."""

from kakebo.validation.validator import (
    ToolOutputValidator,
    enhance_tool_result,
    error_payload,
    get_default_validator,
    is_error_payload,
    validate_tool_output,
)

__all__ = [
    "ToolOutputValidator",
    "enhance_tool_result",
    "error_payload",
    "get_default_validator",
    "is_error_payload",
    "validate_tool_output",
]
