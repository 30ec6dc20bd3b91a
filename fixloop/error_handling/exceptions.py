"""
Custom exception hierarchy for FixLoop error handling.

Separates failures that are fatal for a single scenario file (parse and
validation errors), failures that are recovered into step results, and
failures of the automation backend itself.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class FixLoopError(Exception):
    """Base exception for all FixLoop errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


class ParseError(FixLoopError):
    """Malformed scenario document."""

    def __init__(self, message: str, source_file: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.source_file = source_file
        self.details.update({"source_file": source_file})

    def __str__(self) -> str:
        if self.source_file:
            return f"{self.source_file}: {self.message}"
        return self.message


class ValidationError(FixLoopError):
    """Structurally valid scenario that is semantically incomplete."""

    def __init__(
        self,
        message: str,
        source_file: Optional[str] = None,
        errors: Optional[List[str]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.source_file = source_file
        self.errors = errors or []
        self.details.update({"source_file": source_file, "errors": self.errors})


class StepFailure(FixLoopError):
    """Runtime failure of one action or expectation."""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        action: Optional[str] = None,
        target: Optional[str] = None,
        actual_value: Optional[str] = None,
        expected_value: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.step_id = step_id
        self.action = action
        self.target = target
        self.actual_value = actual_value
        self.expected_value = expected_value
        self.details.update(
            {
                "step_id": step_id,
                "action": action,
                "target": target,
                "actual_value": actual_value,
                "expected_value": expected_value,
            }
        )


class DriverError(FixLoopError):
    """The automation backend is unreachable or misconfigured."""

    def __init__(
        self,
        message: str,
        driver: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.driver = driver
        self.operation = operation
        self.details.update({"driver": driver, "operation": operation})


class AnalysisError(FixLoopError):
    """Analysis was requested for a result that cannot be analyzed."""

    def __init__(self, message: str, scenario_file: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.scenario_file = scenario_file
        self.details.update({"scenario_file": scenario_file})


class FixApplicationError(FixLoopError):
    """A fix applier could not produce a fix."""

    def __init__(
        self,
        message: str,
        applier: Optional[str] = None,
        files: Optional[List[str]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.applier = applier
        self.files = files or []
        self.details.update({"applier": applier, "files": self.files})


class DependencyError(FixLoopError):
    """Scenario dependencies are unknown or cyclic."""

    def __init__(
        self, message: str, scenario_id: Optional[str] = None, **kwargs
    ):
        super().__init__(message, **kwargs)
        self.scenario_id = scenario_id
        self.details.update({"scenario_id": scenario_id})
