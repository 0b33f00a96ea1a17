"""
Tool Output Validation

DESIGN DECISION: Every tool result is checked BEFORE the language model
sees it. The model repeats numbers faithfully, including wrong ones, so
an inconsistent payload must never reach it.

Checks are per tool and come in two strengths:

ERRORS - the payload is structurally or numerically inconsistent
(negative totals, parts that do not add up to the total). The payload is
replaced by an error-shaped object telling the model not to use it.

WARNINGS - the payload is usable but limited (no data, extreme values).
The payload is kept and annotated so the model discloses the limitation.

IMPORTANT: Validation NEVER silently fixes data. It reports.

Validation runs on the camelCase wire dict, the exact shape the model
would receive.
"""

from functools import lru_cache
from typing import Any, Callable, Optional, Union

import structlog

from kakebo.config import PolicySettings, get_settings
from kakebo.models.tools import ToolName, ToolValidationResult


logger = structlog.get_logger(__name__)


VALID_TRENDS = ("increasing", "decreasing", "stable")
VALID_STATUSES = ("safe", "warning", "exceeded")
VALID_LEVELS = ("low", "medium", "high")

MAX_TREND_PERCENTAGE = 1000
MAX_CATEGORY_PERCENTAGE = 500
MAX_BUDGET_MULTIPLE = 3
MAX_DEVIATION_PERCENTAGE = 10000
MAX_ANOMALIES = 20
MAX_PLAUSIBLE_PREDICTION = 1_000_000

VALIDATION_INSTRUCTION = "CRITICAL: Inform user about validation failure. DO NOT use this data."


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _num(value: Any) -> float:
    """Numeric value or 0 for anything else."""
    return float(value) if _is_number(value) else 0.0


def error_payload(
    error_type: str,
    user_message: str,
    technical_details: str,
    instruction: str,
    error_category: str = "technical",
) -> dict[str, Any]:
    """
    The error-shaped object handed to the model instead of a tool result.

    Shared by validation failures and tool execution failures so the model
    sees one shape for "do not use this".

    `_errorCategory` (access, permission, technical or validation) is what
    the user is told went wrong.
    """
    return {
        "_error": True,
        "_errorType": error_type,
        "_errorCategory": error_category,
        "_userMessage": user_message,
        "_technicalDetails": technical_details,
        "_instruction": instruction,
    }


def is_error_payload(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("_error") is True


class ToolOutputValidator:
    """
    Per-tool consistency checks.

    Usage:
        validator = ToolOutputValidator()
        result = validator.validate("getBudgetStatus", payload)
        safe_payload = validator.enhance("getBudgetStatus", payload, result)
    """

    def __init__(self, policy: Optional[PolicySettings] = None):
        self._tolerance = (policy or get_settings().policy).reconciliation_tolerance
        self._checks: dict[ToolName, Callable[[dict], tuple[list[str], list[str]]]] = {
            ToolName.ANALYZE_SPENDING_PATTERN: self._check_spending_pattern,
            ToolName.GET_BUDGET_STATUS: self._check_budget_status,
            ToolName.DETECT_ANOMALIES: self._check_anomalies,
            ToolName.PREDICT_MONTHLY_SPENDING: self._check_prediction,
            ToolName.GET_SPENDING_TRENDS: self._check_trends,
        }

    def validate(
        self,
        tool_name: Union[ToolName, str],
        data: Any,
    ) -> ToolValidationResult:
        """
        Check one tool payload.

        Tools without a dedicated check are accepted as-is.
        """
        if hasattr(data, "to_wire"):
            data = data.to_wire()

        try:
            tool = ToolName(tool_name)
        except ValueError:
            tool = None

        check = self._checks.get(tool) if tool else None
        if check is None:
            logger.warning("no_validator_for_tool", tool=str(tool_name))
            return ToolValidationResult(valid=True)

        if not isinstance(data, dict):
            errors, warnings = [f"Tool output must be an object, got {type(data).__name__}"], []
        else:
            errors, warnings = check(data)

        result = ToolValidationResult(valid=not errors, errors=errors, warnings=warnings)

        if errors:
            logger.error("tool_output_validation_failed", tool=tool.value, errors=errors)
        if warnings:
            logger.warning("tool_output_validation_warnings", tool=tool.value, warnings=warnings)

        return result

    def enhance(
        self,
        tool_name: Union[ToolName, str],
        data: Any,
        validation: ToolValidationResult,
    ) -> dict[str, Any]:
        """
        The payload the model is allowed to see.

        - invalid: an error-shaped object, the data is dropped
        - warnings: the data plus a `_metadata` data-quality note
        - clean: the data unchanged
        """
        if hasattr(data, "to_wire"):
            data = data.to_wire()

        if not validation.valid:
            try:
                name = ToolName(tool_name).display_name
            except ValueError:
                name = str(tool_name)
            return error_payload(
                error_type="validation",
                error_category="validation",
                user_message=(
                    f"Los datos para {name} no se pudieron procesar correctamente. "
                    "Esto puede indicar un problema técnico."
                ),
                technical_details="; ".join(validation.errors),
                instruction=VALIDATION_INSTRUCTION,
            )

        if validation.warnings:
            return {
                **data,
                "_metadata": {
                    "dataQuality": "partial",
                    "warnings": validation.warnings,
                    "note": "LLM should acknowledge data limitations in response",
                },
            }

        return data

    # =========================================================================
    # PER-TOOL CHECKS
    # =========================================================================

    def _check_spending_pattern(self, data: dict) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []

        total = data.get("totalAmount")
        average = data.get("averagePerPeriod")

        if not _is_number(total):
            errors.append("Missing or invalid totalAmount")
        elif total < 0:
            errors.append("totalAmount cannot be negative")

        if not _is_number(average):
            errors.append("Missing or invalid averagePerPeriod")
        elif average < 0:
            errors.append("averagePerPeriod cannot be negative")

        top = data.get("topExpenses")
        if isinstance(top, list) and top and _is_number(total):
            top_total = sum(_num(e.get("amount")) for e in top if isinstance(e, dict))
            if top_total > total * (1 + self._tolerance):
                errors.append(
                    f"Top expenses total ({top_total:.2f}) exceeds totalAmount ({total:.2f})"
                )

        if total == 0 and not data.get("insights"):
            warnings.append("No spending data available - ensure LLM acknowledges this explicitly")

        trend = data.get("trend")
        if trend and trend not in VALID_TRENDS:
            errors.append(f"Invalid trend value: {trend}")

        trend_pct = data.get("trendPercentage")
        if _is_number(trend_pct) and (trend_pct < 0 or trend_pct > MAX_TREND_PERCENTAGE):
            warnings.append(f"Unusual trend percentage: {trend_pct}% - verify calculation")

        return errors, warnings

    def _check_budget_status(self, data: dict) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []

        total_budget = data.get("totalBudget")
        total_spent = data.get("totalSpent")

        if not _is_number(total_budget):
            errors.append("Missing or invalid totalBudget")
        elif total_budget < 0:
            errors.append("totalBudget cannot be negative")

        if not _is_number(total_spent):
            errors.append("Missing or invalid totalSpent")
        elif total_spent < 0:
            errors.append("totalSpent cannot be negative")

        categories = data.get("categories")
        if isinstance(categories, list):
            categories = [c for c in categories if isinstance(c, dict)]

            if _is_number(total_spent) and total_spent > 0:
                categories_total = sum(_num(c.get("spent")) for c in categories)
                discrepancy = abs(categories_total - total_spent)
                if discrepancy > total_spent * self._tolerance:
                    errors.append(
                        f"Categories spent ({categories_total:.2f}) doesn't match "
                        f"totalSpent ({total_spent:.2f}) - discrepancy: {discrepancy:.2f}"
                    )

            for c in categories:
                name = c.get("category")
                percentage = c.get("percentage")
                if _is_number(percentage) and (
                    percentage < 0 or percentage > MAX_CATEGORY_PERCENTAGE
                ):
                    warnings.append(f"Unusual percentage for {name}: {percentage}%")

                spent, budget = _num(c.get("spent")), _num(c.get("budget"))
                if budget > 0 and spent > budget * MAX_BUDGET_MULTIPLE:
                    warnings.append(
                        f"{name} spent ({spent:.2f}) is >3x budget ({budget:.2f})"
                    )

        status = data.get("overallStatus")
        if status and status not in VALID_STATUSES:
            errors.append(f"Invalid status: {status}")

        return errors, warnings

    def _check_anomalies(self, data: dict) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []

        anomalies = data.get("anomalies")
        if not isinstance(anomalies, list):
            errors.append("anomalies must be an array")
            return errors, warnings

        for anomaly in anomalies:
            if not isinstance(anomaly, dict):
                errors.append("Invalid anomaly entry")
                continue

            amount = anomaly.get("amount")
            if not _is_number(amount) or amount <= 0:
                errors.append(f"Invalid anomaly amount: {amount}")

            severity = anomaly.get("severity")
            if severity not in VALID_LEVELS:
                errors.append(f"Invalid severity: {severity}")

            deviation = anomaly.get("deviationPercentage")
            if _is_number(deviation) and (
                deviation < 0 or deviation > MAX_DEVIATION_PERCENTAGE
            ):
                warnings.append(f"Extreme deviation percentage: {deviation}%")

        if len(anomalies) > MAX_ANOMALIES:
            warnings.append(
                f"High anomaly count ({len(anomalies)}) - may indicate detection issue "
                "or very abnormal spending pattern"
            )

        return errors, warnings

    def _check_prediction(self, data: dict) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []

        candidates = [
            data.get(key) for key in ("predictedTotal", "projectedSpending", "projectedTotal")
        ]
        amounts = [v for v in candidates if _is_number(v)]

        if not amounts:
            errors.append("Missing predicted/projected spending amount")
            amount = 0.0
        else:
            amount = amounts[0]

        if amount < 0:
            errors.append("Predicted amount cannot be negative")

        confidence = data.get("confidence")
        if confidence and confidence not in VALID_LEVELS:
            warnings.append(f"Invalid confidence level: {confidence}")

        if amount > MAX_PLAUSIBLE_PREDICTION:
            warnings.append(f"Very high predicted amount ({amount}) - verify calculation")

        return errors, warnings

    def _check_trends(self, data: dict) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []

        points = data.get("dataPoints")
        if not isinstance(points, list):
            points = data.get("trends")

        if not isinstance(points, list):
            errors.append("Missing data points or trends array")
            points = []

        direction = data.get("trendDirection") or data.get("trend")
        if direction and direction not in VALID_TRENDS:
            errors.append(f"Invalid trend direction: {direction}")

        if not points:
            warnings.append(
                "Empty trends data - ensure LLM acknowledges insufficient historical data"
            )

        return errors, warnings


@lru_cache()
def get_default_validator() -> ToolOutputValidator:
    """
    Validator built from the configured policy (cached).

    Call get_default_validator.cache_clear() after reloading settings.
    """
    return ToolOutputValidator()


def validate_tool_output(tool_name: Union[ToolName, str], data: Any) -> ToolValidationResult:
    """Validate with the configured policy."""
    return get_default_validator().validate(tool_name, data)


def enhance_tool_result(
    tool_name: Union[ToolName, str],
    data: Any,
    validation: ToolValidationResult,
) -> dict[str, Any]:
    return get_default_validator().enhance(tool_name, data, validation)
