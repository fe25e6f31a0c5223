"""Configuration management using pydantic-settings."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library settings loaded from environment variables."""

    # Execution defaults
    default_provider: str = Field(default="claude", description="Provider used by the CLI when --provider is omitted")
    default_timeout: float = Field(default=300.0, description="Per-invocation wall-clock timeout in seconds")
    kill_grace_period: float = Field(default=5.0, description="Seconds between SIGTERM and SIGKILL on timeout/cancel")

    # Output bounds
    max_output_bytes: int = Field(default=10 * 1024 * 1024, description="Cap on captured stdout bytes per call")
    max_stderr_bytes: int = Field(default=1024 * 1024, description="Cap on captured stderr bytes per call")

    # Discovery
    probe_timeout: float = Field(default=10.0, description="Timeout for the --version probe in seconds")

    # Resilience
    circuit_preset: str = Field(default="default", description="Circuit breaker preset (default/sensitive/tolerant)")
    retry_preset: str = Field(default="no_retry", description="Retry preset (no_retry/default_network/aggressive/conservative)")

    # Logging
    log_level: str = Field(default="info", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("circuit_preset")
    @classmethod
    def _check_circuit_preset(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("default", "sensitive", "tolerant"):
            raise ValueError(f"Unknown circuit breaker preset: {value}")
        return value

    @field_validator("retry_preset")
    @classmethod
    def _check_retry_preset(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("no_retry", "default_network", "aggressive", "conservative"):
            raise ValueError(f"Unknown retry preset: {value}")
        return value


# Global settings instance
settings = Settings()
