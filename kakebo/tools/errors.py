"""
Tool Errors

A tool failure is never forwarded raw to the language model. It is
classified, then converted into the same error-shaped payload the
validator produces, with a Spanish message the model must relay:

    {
        "_error": true,
        "_errorType": "database",
        "_errorCategory": "access",
        "_userMessage": "No pude acceder a tu información de ...",
        "_technicalDetails": "connection timeout",
        "_instruction": "CRITICAL: You MUST inform the user ..."
    }
"""

from enum import Enum
from typing import Any, Union

from kakebo.models.tools import ToolName
from kakebo.validation import error_payload


class ErrorType(str, Enum):
    """What went wrong, from the tool's point of view."""
    DATABASE = "database"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


class ErrorCategory(str, Enum):
    """How the failure is described to the user."""
    ACCESS = "access"
    PERMISSION = "permission"
    VALIDATION = "validation"
    TECHNICAL = "technical"


ERROR_CATEGORIES = {
    ErrorType.DATABASE: ErrorCategory.ACCESS,
    ErrorType.NOT_FOUND: ErrorCategory.ACCESS,
    ErrorType.PERMISSION: ErrorCategory.PERMISSION,
    ErrorType.VALIDATION: ErrorCategory.VALIDATION,
    ErrorType.UNKNOWN: ErrorCategory.TECHNICAL,
}

TOOL_ERROR_INSTRUCTION = (
    "CRITICAL: You MUST inform the user about this error using the _userMessage. "
    "DO NOT make up data. DO NOT proceed as if the tool worked."
)

_USER_MESSAGES = {
    ErrorType.DATABASE: (
        "No pude acceder a tu información de {name} en este momento. "
        "Por favor, inténtalo de nuevo en unos momentos."
    ),
    ErrorType.VALIDATION: (
        "Los datos para {name} no se pudieron procesar correctamente. "
        "Esto puede indicar un problema técnico."
    ),
    ErrorType.NOT_FOUND: (
        "No encontré datos para {name}. "
        "Esto puede ser normal si no has registrado gastos aún."
    ),
    ErrorType.PERMISSION: (
        "No tengo permiso para acceder a los datos de {name}. Verifica tu sesión."
    ),
    ErrorType.UNKNOWN: (
        "Ocurrió un error al ejecutar {name}. Por favor, inténtalo de nuevo."
    ),
}

# Checked in order, first hit wins
_KEYWORDS: list[tuple[ErrorType, tuple[str, ...]]] = [
    (ErrorType.DATABASE, ("database", "connection", "timeout", "storage")),
    (ErrorType.VALIDATION, ("validation", "invalid", "required")),
    (ErrorType.NOT_FOUND, ("not found", "no data", "empty")),
    (ErrorType.PERMISSION, ("permission", "unauthorized", "forbidden")),
]


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ToolExecutionError(Exception):
    """Base exception for tool failures."""
    pass


class DataValidationError(ToolExecutionError):
    """Tool output failed validation and must not be used."""

    def __init__(self, tool: str, errors: list[str]):
        self.tool = tool
        self.errors = errors
        super().__init__(f"Data validation failed: {', '.join(errors)}")


class UpstreamError(ToolExecutionError):
    """The store or the language model failed."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service} error: {message}")


class UnknownToolError(ToolExecutionError):
    """The model asked for a tool that does not exist."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"Unknown tool: {tool}")


# =============================================================================
# CLASSIFICATION
# =============================================================================

def classify_error(error: BaseException) -> ErrorType:
    """Classify an exception by its message."""
    if isinstance(error, DataValidationError):
        return ErrorType.VALIDATION

    message = str(error).lower()
    for error_type, keywords in _KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return error_type
    return ErrorType.UNKNOWN


def tool_display_name(tool: Union[ToolName, str]) -> str:
    try:
        return ToolName(tool).display_name
    except ValueError:
        return str(tool)


def user_message_for(tool: Union[ToolName, str], error_type: ErrorType) -> str:
    return _USER_MESSAGES[error_type].format(name=tool_display_name(tool))


def build_error_payload(tool: Union[ToolName, str], error: BaseException) -> dict[str, Any]:
    """Error-shaped payload the model receives instead of a failed tool's result."""
    error_type = classify_error(error)
    return error_payload(
        error_type=error_type.value,
        user_message=user_message_for(tool, error_type),
        technical_details=str(error) or type(error).__name__,
        instruction=TOOL_ERROR_INSTRUCTION,
        error_category=ERROR_CATEGORIES[error_type].value,
    )
