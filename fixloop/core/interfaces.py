"""
Core interfaces and abstract base classes for the FixLoop framework.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from fixloop.core.types import (
    Analysis,
    Expectation,
    ExpectationOutcome,
    Fix,
    Platform,
    Step,
)


class DiagnosticBuffer:
    """Collects console and network errors observed during one run attempt."""

    def __init__(self) -> None:
        self.console_errors: List[str] = []
        self.network_errors: List[str] = []

    def record_console_error(self, message: str) -> None:
        self.console_errors.append(message)

    def record_network_error(self, message: str) -> None:
        self.network_errors.append(message)

    def reset(self) -> None:
        """Clear both buffers before a new run attempt."""
        self.console_errors = []
        self.network_errors = []

    def drain(self) -> Dict[str, List[str]]:
        """Return the collected errors and clear the buffers."""
        drained = {
            "console_errors": list(self.console_errors),
            "network_errors": list(self.network_errors),
        }
        self.reset()
        return drained


class ActionDriver(ABC):
    """Abstract interface for automation backends that execute scenario steps."""

    name: str = "driver"

    def __init__(self, platform: Platform = Platform.WEB) -> None:
        self.platform = platform
        self.diagnostics = DiagnosticBuffer()
        # Set by the runner to the per-scenario artifact directory
        self.screenshot_dir: Optional[Path] = None

    @abstractmethod
    async def initialize(self) -> None:
        """Start a session against a live application instance."""
        pass

    @abstractmethod
    async def execute_step(self, step: Step) -> Optional[str]:
        """
        Execute one flattened step.

        Returns:
            Path of an artifact the step produced (screenshot steps), if any

        Raises:
            StepFailure: The action could not be performed
            DriverError: The backend itself is unusable
        """
        pass

    @abstractmethod
    async def check_expectation(self, expectation: Expectation) -> ExpectationOutcome:
        """Check a post-condition against the live application."""
        pass

    @abstractmethod
    async def take_screenshot(self, name: str, directory: Path) -> str:
        """Capture a screenshot and return the written path."""
        pass

    @abstractmethod
    async def get_current_location(self) -> str:
        """Return the current URL or route."""
        pass

    @abstractmethod
    async def teardown(self) -> None:
        """Release the session."""
        pass


class FixApplier(ABC):
    """Abstract interface for components that edit source in response to an analysis."""

    @abstractmethod
    async def apply(self, analysis: Analysis) -> Fix:
        """
        Apply a fix for the given analysis.

        Args:
            analysis: Failure analysis to act on

        Returns:
            Record of the files read or modified and a validity flag
        """
        pass


class ConfigProvider(ABC):
    """Abstract interface for configuration management."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass

    @abstractmethod
    def get_required(self, key: str) -> Any:
        """Get required configuration value, raise if missing."""
        pass

    @abstractmethod
    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        pass
