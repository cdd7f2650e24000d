from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        env_prefix="TXGUARD_",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Retry Policy
    default_max_attempts: int = Field(default=3, description="Default attempts per operation")
    retry_base_delay_seconds: float = Field(default=2.0, description="Base backoff delay")
    retry_strategy: str = Field(default="exponential", description="Backoff strategy: exponential or linear")
    retry_max_delay_seconds: Optional[float] = Field(default=60.0, description="Upper bound on any backoff delay")
    retry_jitter: bool = Field(default=False, description="Randomize backoff delays")
    retry_jitter_factor: float = Field(default=0.1, description="Jitter range as a fraction of the delay")
    rate_limit_backoff_multiplier: float = Field(
        default=2.0,
        description="Backoff multiplier applied to rate-limited failures",
    )
    unknown_error_max_attempts: int = Field(
        default=2,
        description="Attempt cap for failures that could not be classified",
    )

    # Sequential Queue
    queue_spacing_seconds: float = Field(
        default=1.0,
        description="Minimum pause between consecutive distinct operations",
    )
    attempt_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Per-attempt timeout; unset means attempts may run indefinitely",
    )

    # Circuit Breaker
    circuit_failure_threshold: int = Field(default=5, description="Consecutive failures before opening")
    circuit_open_timeout_seconds: float = Field(default=30.0, description="Cool-down before a probe is allowed")

    # Batch Executor
    batch_chunk_size: Optional[int] = Field(
        default=None,
        description="Items submitted concurrently per chunk; unset runs sequentially",
    )
    batch_chunk_pause_seconds: float = Field(default=0.1, description="Pause between chunks")

    # JSON-RPC Submitter
    rpc_url: str = Field(default="", description="JSON-RPC endpoint used by RpcSubmitter")
    rpc_timeout_seconds: float = Field(default=30.0, description="HTTP timeout for RPC calls")
    receipt_poll_interval_seconds: float = Field(default=2.0, description="Receipt polling interval")
    receipt_timeout_seconds: float = Field(default=120.0, description="Max wait for a receipt")

    @field_validator("retry_strategy")
    @classmethod
    def _normalize_strategy(cls, value: Any) -> str:
        normalized = str(value).strip().lower()
        if normalized not in {"exponential", "linear"}:
            raise ValueError("retry_strategy must be 'exponential' or 'linear'")
        return normalized

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: Any) -> str:
        return str(value).strip().upper()


settings = Settings()
