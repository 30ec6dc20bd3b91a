"""Configuration management for the FixLoop framework."""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fixloop.core.interfaces import ConfigProvider


# Nested keys accepted in a YAML config file, mapped onto flat settings fields
YAML_SECTION_KEYS: Dict[str, Dict[str, str]] = {
    "orchestrator": {
        "maxIterations": "max_iterations",
        "parallelScenarios": "parallel_scenarios",
        "maxParallelScenarios": "max_parallel_scenarios",
        "stopOnFirstFailure": "stop_on_first_failure",
        "maxDurationSeconds": "max_duration_seconds",
    },
    "testRunner": {
        "baseUrl": "base_url",
        "platform": "platform",
        "driver": "driver",
        "timeout": "wait_timeout_ms",
        "elementTimeout": "element_timeout_ms",
        "navigationTimeout": "navigation_timeout_ms",
        "screenshotOnFailure": "screenshot_on_failure",
        "screenshotOnStep": "screenshot_on_step",
        "headless": "browser_headless",
    },
    "analyzer": {
        "maxAffectedFiles": "max_affected_files",
        "requireExistingFiles": "require_existing_files",
    },
    "codingAgent": {
        "autoApply": "auto_apply",
        "applier": "fix_applier",
        "maxFilesPerFix": "max_files_per_fix",
        "validateTypescript": "validate_fixes",
        "validationCommand": "fix_validation_command",
    },
}


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Orchestrator Configuration
    max_iterations: int = Field(
        default=5, ge=1, description="Maximum run attempts per scenario"
    )
    parallel_scenarios: bool = Field(
        default=False, description="Run independent scenarios concurrently"
    )
    max_parallel_scenarios: int = Field(
        default=3, ge=1, description="Concurrent scenarios when running in parallel"
    )
    stop_on_first_failure: bool = Field(
        default=False,
        description="Stop the batch once a scenario fails its final attempt",
    )
    max_duration_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Optional wall-clock ceiling for a whole orchestrator run",
    )

    # Test Runner Configuration
    base_url: str = Field(
        default="http://localhost:5173", description="Application under test"
    )
    platform: str = Field(default="web", description="Platform under test")
    driver: str = Field(default="playwright", description="Action driver backend")
    element_timeout_ms: int = Field(
        default=10000, ge=100, description="Timeout for element lookups (ms)"
    )
    wait_timeout_ms: int = Field(
        default=30000, ge=100, description="Timeout for explicit element waits (ms)"
    )
    navigation_timeout_ms: int = Field(
        default=30000, ge=100, description="Timeout for navigation (ms)"
    )
    loading_indicator_text: Optional[str] = Field(
        default="Loading...",
        description="Text that must disappear before the first step runs",
    )
    screenshot_on_failure: bool = Field(
        default=True, description="Capture a screenshot when a step fails"
    )
    screenshot_on_step: bool = Field(
        default=False, description="Capture a screenshot after every passed step"
    )

    # Browser Configuration
    browser_headless: bool = Field(
        default=True, description="Run browser in headless mode"
    )
    browser_viewport_width: int = Field(
        default=390, ge=320, description="Browser viewport width"
    )
    browser_viewport_height: int = Field(
        default=844, ge=480, description="Browser viewport height"
    )

    # Analyzer Configuration
    max_affected_files: int = Field(
        default=5, ge=1, le=5, description="Maximum candidate files per analysis"
    )
    require_existing_files: bool = Field(
        default=True,
        description="Only attribute failures to files present under the project root",
    )

    # Fix Applier Configuration
    auto_apply: bool = Field(
        default=True, description="Apply fixes between retry attempts"
    )
    fix_applier: str = Field(default="record", description="Fix applier backend")
    max_files_per_fix: int = Field(
        default=3, ge=1, description="Maximum files a fix may read or modify"
    )
    validate_fixes: bool = Field(
        default=True, description="Run the validation command after a fix"
    )
    fix_validation_command: str = Field(
        default="npx tsc --noEmit", description="Command that validates modified source"
    )
    fix_validation_timeout_seconds: int = Field(
        default=120, ge=1, description="Timeout for the validation command"
    )

    # OpenAI Configuration
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o", description="Model used for fixes")
    openai_temperature: float = Field(
        default=0.2, ge=0.0, le=2.0, description="Sampling temperature"
    )
    openai_max_retries: int = Field(
        default=3, ge=1, description="Maximum API retry attempts"
    )
    openai_request_timeout_seconds: int = Field(
        default=300, ge=10, description="Request timeout for OpenAI API calls"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format (json or text)")
    log_file: Optional[str] = Field(default=None, description="Log file path")

    # Storage Configuration
    scenarios_dir: Path = Field(
        default=Path("e2e/scenarios"), description="Scenario files directory"
    )
    reports_dir: Path = Field(
        default=Path("e2e/reports"), description="Reports output directory"
    )
    screenshots_dir: Path = Field(
        default=Path("e2e/screenshots"), description="Screenshots directory"
    )
    project_root: Path = Field(
        default=Path("."), description="Root of the application source tree"
    )

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("log_format")
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in ["json", "text"]:
            raise ValueError(f"Invalid log format: {v}")
        return v

    @field_validator("platform")
    def validate_platform(cls, v: str) -> str:
        """Validate platform name."""
        if v.lower() not in ["web", "ios", "android"]:
            raise ValueError(f"Invalid platform: {v}")
        return v.lower()

    @field_validator("driver", "fix_applier")
    def normalize_backend_name(cls, v: str) -> str:
        """Normalize backend names."""
        return v.strip().lower()

    @classmethod
    def from_yaml(cls, path: Path, **overrides: Any) -> "Settings":
        """
        Build settings from a YAML config file.

        The file may use the sectioned layout (orchestrator, testRunner,
        analyzer, codingAgent) or flat field names. Explicit overrides win.

        Args:
            path: YAML config file
            **overrides: Field values taking precedence over the file

        Returns:
            Settings instance
        """
        with open(path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")

        values: Dict[str, Any] = {}
        for key, value in raw.items():
            section = YAML_SECTION_KEYS.get(key)
            if section is not None and isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    field_name = section.get(sub_key, sub_key)
                    values[field_name] = sub_value
            else:
                values[key] = value

        values.update(overrides)
        return cls(**values)

    def create_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.reports_dir, self.screenshots_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)


class ConfigManager(ConfigProvider):
    """Configuration manager implementation."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """
        Initialize config manager.

        Args:
            settings: Optional settings instance
        """
        self.settings = settings or get_settings()

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        try:
            return getattr(self.settings, key)
        except AttributeError:
            return default

    def get_required(self, key: str) -> Any:
        """Get required configuration value."""
        try:
            return getattr(self.settings, key)
        except AttributeError:
            raise KeyError(f"Required configuration key not found: {key}")

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self.settings.model_dump()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    settings = Settings()
    settings.create_directories()
    return settings


def get_config() -> ConfigManager:
    """Get configuration manager instance."""
    return ConfigManager(get_settings())


def load_config_file(path: Path) -> Settings:
    """
    Apply a YAML config file on top of the cached settings.

    Components read configuration through get_settings(), so values from the
    file are copied onto the cached instance rather than replacing it.
    """
    settings = get_settings()
    loaded = Settings.from_yaml(path)
    for name in loaded.model_fields_set:
        setattr(settings, name, getattr(loaded, name))
    settings.create_directories()
    return settings
