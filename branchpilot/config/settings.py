"""
Configuration system using Pydantic for type-safe settings management.

This module provides configuration classes for the workflow engine: git
branch defaults, the retry budget, build validation commands, the automation
channel's timing, sequential pipeline policy and logging.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from branchpilot.exceptions import ConfigurationError

DEFAULT_VALIDATION_COMMANDS = [
    "npm run build",
    "yarn build",
    "npm run test",
    "yarn test",
    "npm run lint",
    "yarn lint",
]


class GitConfig(BaseModel):
    """Git branch defaults."""

    default_branch: str = Field(default="main", description="Branch used to seed missing start points")
    integration_branch: str = Field(
        default="agent", description="Shared branch that sequential runs merge into"
    )
    remote: str = Field(default="origin", description="Remote used for push operations")
    push: bool = Field(default=True, description="Push task branches after committing")
    command_timeout: float = Field(default=60.0, gt=0, description="Seconds allowed per git command")


class RetryConfig(BaseModel):
    """Retry-with-feedback budget."""

    max_attempts: int = Field(default=3, ge=1, le=10, description="Apply/validate attempts per step")


class ValidationConfig(BaseModel):
    """Build/test validation commands."""

    commands: list[str] = Field(
        default_factory=lambda: list(DEFAULT_VALIDATION_COMMANDS),
        description="Candidate commands tried in order; the first success wins",
    )
    test_command: str = Field(default="npm test", description="Command used by the testing pipeline")
    command_timeout: float = Field(default=60.0, gt=0, description="Seconds allowed per command")


class AutomationConfig(BaseModel):
    """AI automation channel timing."""

    agent_command: list[str] = Field(
        default_factory=lambda: ["claude", "--print", "--dangerously-skip-permissions"],
        description="Agent CLI invocation; the prompt is passed on stdin",
    )
    session_settle_delay: float = Field(
        default=2.0, ge=0, description="Seconds to wait after opening a new session"
    )
    response_timeout: float = Field(default=120.0, gt=0, description="Seconds to wait for one response")
    completion_timeout: float = Field(
        default=300.0, gt=0, description="Seconds to wait for a completion marker"
    )
    poll_interval: float = Field(default=5.0, gt=0, description="Seconds between completion polls")
    completion_markers: list[str] = Field(
        default_factory=lambda: ["done", "completed", "finished"],
        description="Case-insensitive substrings that signal task completion",
    )

    @field_validator("completion_markers")
    @classmethod
    def _markers_not_empty(cls, value: list[str]) -> list[str]:
        markers = [marker.strip().lower() for marker in value if marker.strip()]
        if not markers:
            raise ValueError("completion_markers must contain at least one marker")
        return markers


class PipelineConfig(BaseModel):
    """Sequential pipeline and fix application policy."""

    continue_on_error: bool = Field(
        default=True, description="Keep running remaining tasks after a task fails"
    )
    max_concurrent_fixes: int = Field(
        default=3, ge=1, le=10, description="Independent fixes applied concurrently"
    )
    fix_timeout: float = Field(default=600.0, gt=0, description="Seconds allowed per fix")


class LoggingConfig(BaseModel):
    """Logging output configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    renderer: Literal["json", "console"] = "json"


class BranchPilotSettings(BaseSettings):
    """Main engine settings.

    Every section has defaults, so ``BranchPilotSettings()`` is a working
    configuration. Values can be overridden from YAML or from environment
    variables such as ``BRANCHPILOT_RETRY__MAX_ATTEMPTS=5``.
    """

    model_config = SettingsConfigDict(
        env_prefix="BRANCHPILOT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    git: GitConfig = Field(default_factory=GitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> BranchPilotSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} syntax for environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            BranchPilotSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports ``${VAR_NAME}`` (required) and ``${VAR_NAME:-default}``.
        YAML comment lines are left unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
