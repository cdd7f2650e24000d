import pytest
from pydantic import ValidationError

from txguard.config import Settings
from txguard.core.execution import BatchConfig, QueueConfig
from txguard.core.recovery import BackoffStrategy, CircuitBreakerConfig, RetryConfig
from txguard.providers import RpcSubmitterConfig


def test_defaults(monkeypatch):
    """Defaults apply when no TXGUARD_ variables are set."""

    monkeypatch.delenv("TXGUARD_DEFAULT_MAX_ATTEMPTS", raising=False)
    monkeypatch.delenv("TXGUARD_RETRY_STRATEGY", raising=False)

    settings = Settings(_env_file=None)

    assert settings.default_max_attempts == 3
    assert settings.retry_strategy == "exponential"
    assert settings.attempt_timeout_seconds is None
    assert settings.batch_chunk_size is None


def test_env_overrides(monkeypatch):
    """Environment variables with the TXGUARD_ prefix override defaults."""

    monkeypatch.setenv("TXGUARD_RETRY_BASE_DELAY_SECONDS", "0.5")
    monkeypatch.setenv("TXGUARD_RETRY_STRATEGY", " Linear ")
    monkeypatch.setenv("TXGUARD_CIRCUIT_FAILURE_THRESHOLD", "7")
    monkeypatch.setenv("TXGUARD_LOG_LEVEL", "debug")

    settings = Settings(_env_file=None)

    assert settings.retry_base_delay_seconds == 0.5
    assert settings.retry_strategy == "linear"
    assert settings.circuit_failure_threshold == 7
    assert settings.log_level == "DEBUG"


def test_invalid_strategy(monkeypatch):
    monkeypatch.setenv("TXGUARD_RETRY_STRATEGY", "fibonacci")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_component_configs_from_settings(monkeypatch):
    """Each component config reads its fields from a Settings instance."""

    monkeypatch.setenv("TXGUARD_RETRY_STRATEGY", "linear")
    monkeypatch.setenv("TXGUARD_QUEUE_SPACING_SECONDS", "0")
    monkeypatch.setenv("TXGUARD_ATTEMPT_TIMEOUT_SECONDS", "15")
    monkeypatch.setenv("TXGUARD_BATCH_CHUNK_SIZE", "5")
    monkeypatch.setenv("TXGUARD_CIRCUIT_OPEN_TIMEOUT_SECONDS", "1")
    monkeypatch.setenv("TXGUARD_RPC_URL", "http://localhost:8545")

    settings = Settings(_env_file=None)

    retry = RetryConfig.from_settings(settings)
    assert retry.strategy == BackoffStrategy.LINEAR
    assert retry.unknown_max_attempts == 2

    queue = QueueConfig.from_settings(settings)
    assert queue.spacing_seconds == 0
    assert queue.attempt_timeout_seconds == 15

    batch = BatchConfig.from_settings(settings)
    assert batch.chunk_size == 5

    breaker = CircuitBreakerConfig.from_settings(settings)
    assert breaker.open_timeout_seconds == 1

    rpc = RpcSubmitterConfig.from_settings(settings)
    assert rpc.rpc_url == "http://localhost:8545"
    assert rpc.receipt_timeout_seconds == 120
