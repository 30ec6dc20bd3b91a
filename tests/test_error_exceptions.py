"""
Unit tests for error handling exceptions.
"""

from datetime import datetime

import pytest

from fixloop.error_handling.exceptions import (
    AnalysisError,
    DependencyError,
    DriverError,
    FixApplicationError,
    FixLoopError,
    ParseError,
    StepFailure,
    ValidationError,
)


class TestFixLoopError:
    """Test base exception class."""

    def test_basic_creation(self):
        """Test basic error creation."""
        error = FixLoopError("Test error")
        assert str(error) == "Test error"
        assert error.message == "Test error"
        assert error.error_code == "FixLoopError"
        assert error.details == {}
        assert error.cause is None
        assert isinstance(error.timestamp, datetime)

    def test_with_cause(self):
        """Test error with cause."""
        cause = ValueError("Original error")
        error = FixLoopError("Wrapped error", error_code="FL001", cause=cause)
        assert error.cause == cause
        assert error.error_code == "FL001"

    def test_to_dict(self):
        """Test conversion to dictionary."""
        error = FixLoopError("Test error", details={"key": "value"}, cause=KeyError("k"))

        result = error.to_dict()
        assert result["error_type"] == "FixLoopError"
        assert result["message"] == "Test error"
        assert result["details"] == {"key": "value"}
        assert result["cause"] == "'k'"
        assert "timestamp" in result

    @pytest.mark.parametrize(
        "error_class",
        [
            ParseError,
            ValidationError,
            StepFailure,
            DriverError,
            AnalysisError,
            FixApplicationError,
            DependencyError,
        ],
    )
    def test_hierarchy(self, error_class):
        """Test every error is a FixLoopError with its own code."""
        error = error_class("boom")
        assert isinstance(error, FixLoopError)
        assert error.error_code == error_class.__name__


class TestScenarioErrors:
    """Test parse and validation errors."""

    def test_parse_error_names_file(self):
        error = ParseError("Scenario missing 'name' field", source_file="a.yaml")
        assert str(error) == "a.yaml: Scenario missing 'name' field"
        assert error.details == {"source_file": "a.yaml"}

    def test_parse_error_without_file(self):
        assert str(ParseError("bad")) == "bad"

    def test_validation_error_lists_problems(self):
        error = ValidationError(
            "Scenario is invalid", source_file="a.yaml", errors=["Duplicate step id: x"]
        )
        assert error.errors == ["Duplicate step id: x"]
        assert error.to_dict()["details"]["errors"] == ["Duplicate step id: x"]


class TestRuntimeErrors:
    """Test step, driver and fix errors."""

    def test_step_failure_details(self):
        error = StepFailure(
            'Expected URL to contain "/done" but got "/"',
            step_id="save",
            action="tap",
            target="Save",
            actual_value="/",
            expected_value="/done",
        )
        assert error.step_id == "save"
        assert error.details["expected_value"] == "/done"
        assert error.details["actual_value"] == "/"

    def test_driver_error_details(self):
        error = DriverError("Failed to launch", driver="playwright", operation="initialize")
        assert error.details == {"driver": "playwright", "operation": "initialize"}

    def test_fix_application_error_files(self):
        error = FixApplicationError("LLM failed", applier="llm")
        assert error.files == []
        assert error.details["applier"] == "llm"
