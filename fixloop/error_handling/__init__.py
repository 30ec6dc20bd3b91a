"""
Error taxonomy for FixLoop.
"""

from .exceptions import (
    AnalysisError,
    DependencyError,
    DriverError,
    FixApplicationError,
    FixLoopError,
    ParseError,
    StepFailure,
    ValidationError,
)

__all__ = [
    "FixLoopError",
    "ParseError",
    "ValidationError",
    "StepFailure",
    "DriverError",
    "AnalysisError",
    "FixApplicationError",
    "DependencyError",
]
