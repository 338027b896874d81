"""Error taxonomy shared by the loader, the executor and the runner."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorCode(Enum):
    """Standardized error codes surfaced in run results."""

    # Composition-time errors
    CONFIG_ERROR = "CONFIG_ERROR"
    PARAMETER_ERROR = "PARAMETER_ERROR"
    MISSING_REQUIRED_PARAMETER = "MISSING_REQUIRED_PARAMETER"
    CYCLIC_INCLUDE = "CYCLIC_INCLUDE"

    # Runtime errors
    ACTION_FAILED = "ACTION_FAILED"
    ELEMENT_NOT_FOUND = "ELEMENT_NOT_FOUND"
    ACTION_TIMEOUT = "ACTION_TIMEOUT"
    ASSERTION_FAILED = "ASSERTION_FAILED"
    SUCCESS_CONDITION_NOT_MET = "SUCCESS_CONDITION_NOT_MET"
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"


class AutomationError(Exception):
    """Root of every error raised by the automation engine."""

    code: ErrorCode = ErrorCode.CONFIG_ERROR

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# ---------------------------------------------------------------------------
# composition-time


class ConfigError(AutomationError):
    """Schema, parse or structural error. Fatal, never retried."""

    code = ErrorCode.CONFIG_ERROR


class ParameterError(ConfigError):
    code = ErrorCode.PARAMETER_ERROR


class MissingRequiredParameter(ParameterError):
    """Raised with the full list of unbound required parameters."""

    code = ErrorCode.MISSING_REQUIRED_PARAMETER

    def __init__(self, names: Sequence[str], *, source: Optional[str] = None) -> None:
        self.names: List[str] = sorted(names)
        where = f" in {source}" if source else ""
        super().__init__(
            f"missing required parameter(s){where}: {', '.join(self.names)}",
            details={"names": self.names, "source": source},
        )


class CyclicInclude(ConfigError):
    code = ErrorCode.CYCLIC_INCLUDE

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle: List[str] = list(cycle)
        super().__init__(
            f"cyclic include: {' -> '.join(self.cycle)}",
            details={"cycle": self.cycle},
        )


# ---------------------------------------------------------------------------
# runtime


class ActionError(AutomationError):
    """Failure of a single action during a graph walk."""

    code = ErrorCode.ACTION_FAILED

    def __init__(
        self,
        message: str,
        *,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.action = action
        self.trail: List[str] = []

    def __str__(self) -> str:
        if self.action:
            return f"{self.action}: {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.action:
            payload["action"] = self.action
        if self.trail:
            payload["trail"] = list(self.trail)
        return payload


class ActionFailed(ActionError):
    code = ErrorCode.ACTION_FAILED


class TargetNotFound(ActionError):
    code = ErrorCode.ELEMENT_NOT_FOUND


class ActionTimeout(ActionError):
    code = ErrorCode.ACTION_TIMEOUT


class AssertionFailed(ActionError):
    code = ErrorCode.ASSERTION_FAILED


class SuccessConditionNotMet(ActionError):
    code = ErrorCode.SUCCESS_CONDITION_NOT_MET

    def __init__(self) -> None:
        super().__init__("success conditions not met", action="success")


class RetryExhausted(AutomationError):
    """All attempts failed; carries the error of the last attempt."""

    code = ErrorCode.RETRY_EXHAUSTED

    def __init__(self, last_error: ActionError, attempts: int) -> None:
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"failed after {attempts} attempt(s): {last_error}",
            details={"attempts": attempts, "last_error": last_error.to_dict()},
        )
