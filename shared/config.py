"""
Shared configuration management for QuotaGate.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QuotaGateConfig(BaseSettings):
    """Settings shared by every quota gate in a process."""

    model_config = SettingsConfigDict(
        env_prefix="QUOTA_GATE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Counter store
    redis_url: str = Field(default="redis://localhost:6379/0")
    key_prefix: str = Field(default="quota", min_length=1)

    # Local batching
    batch_size: int = Field(default=10, gt=0)

    # Self-throttle between remote synchronizations (0.1 ms keeps one
    # instance under ~10k store calls per second)
    min_sync_interval_ns: int = Field(default=100_000, ge=0)

    # Script re-registration after the store lost it
    script_retry_attempts: int = Field(default=3, gt=0)
    script_retry_delay_seconds: float = Field(default=0.01, ge=0.0)


def get_config(**overrides) -> QuotaGateConfig:
    """Get configuration, applying explicit overrides on top of the environment."""
    return QuotaGateConfig(**overrides)
