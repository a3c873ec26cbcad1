"""Configuration management for the adaptive flow engine."""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from adaptive_flow.core.interfaces import ConfigProvider
from adaptive_flow.core.types import AdaptiveTestConfig


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Engine Limits
    max_loop_iterations: int = Field(
        default=50, ge=1, description="Default iteration cap for loops"
    )
    max_nested_depth: int = Field(
        default=3, ge=1, description="Nesting depth before the validator warns"
    )
    loop_iteration_timeout: int = Field(
        default=30000, ge=0, description="Timeout for loops that set none (ms); 0 disables"
    )
    total_timeout: int = Field(
        default=300000, ge=0, description="Wall-clock budget for a whole run (ms)"
    )
    condition_evaluation_timeout: int = Field(
        default=10000, ge=0, description="Locator budget per condition (ms)"
    )
    state_detection_timeout: int = Field(
        default=5000, ge=0, description="Budget per page-state probe (ms)"
    )
    default_condition_fallback: bool = Field(
        default=False, description="Value used when a condition cannot be evaluated"
    )

    # Circuit Breaker
    circuit_breaker_max_depth: int = Field(
        default=10, ge=1, description="Depth above which execution should stop"
    )
    circuit_breaker_max_errors: int = Field(
        default=5, ge=0, description="Error count above which execution should stop"
    )

    # Variable Store
    save_variable_snapshots: bool = Field(
        default=False, description="Record a snapshot after every mutation"
    )
    max_variable_snapshots: int = Field(
        default=100, ge=1, description="Size of the snapshot ring"
    )
    enable_variable_change_events: bool = Field(
        default=False, description="Notify listeners on variable changes"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )
    log_file: Optional[str] = Field(
        default=None, description="Log file path"
    )
    sanitize_logs: bool = Field(
        default=True, description="Redact credentials from log output"
    )

    # Development Configuration
    debug_mode: bool = Field(
        default=False, description="Enable debug mode"
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

    @model_validator(mode="after")
    def check_timeouts(self) -> "Settings":
        """A single loop may not outlive the whole run."""
        if self.total_timeout and self.loop_iteration_timeout > self.total_timeout:
            raise ValueError(
                "loop_iteration_timeout cannot exceed total_timeout "
                f"({self.loop_iteration_timeout} > {self.total_timeout})"
            )
        return self

    def create_directories(self) -> None:
        """Create the log file directory if a log file is configured."""
        if self.log_file:
            Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)

    def to_test_config(self) -> AdaptiveTestConfig:
        """Build the per-test-case defaults from these settings."""
        return AdaptiveTestConfig(
            max_loop_iterations=self.max_loop_iterations,
            max_nested_depth=self.max_nested_depth,
            loop_iteration_timeout=self.loop_iteration_timeout,
            total_timeout=self.total_timeout,
            condition_evaluation_timeout=self.condition_evaluation_timeout,
            default_condition_fallback=self.default_condition_fallback,
            save_variable_snapshots=self.save_variable_snapshots,
        )


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
    # Load .env file if it exists
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    settings = Settings()
    settings.create_directories()
    return settings


def get_config() -> ConfigManager:
    """Get configuration manager instance."""
    return ConfigManager(get_settings())
