"""Application settings for providers, orchestration, storage and the API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

if TYPE_CHECKING:
    from ..services.orchestrator import OrchestratorConfig


def _split_csv(value: str) -> List[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from the environment and ``.env``."""

    # ===== Analysis gate =====
    analysis_enabled: bool = Field(default=True, alias="ANALYSIS_ENABLED")
    analysis_providers: str = Field(
        default="openai,anthropic,gemini,perplexity", alias="ANALYSIS_PROVIDERS"
    )
    disabled_providers: str = Field(default="", alias="DISABLED_PROVIDERS")
    max_projected_cost_usd: Optional[float] = Field(default=None, alias="MAX_PROJECTED_COST_USD")

    # Provider API keys
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    perplexity_api_key: Optional[str] = Field(default=None, alias="PERPLEXITY_API_KEY")

    # Provider model overrides
    openai_model: Optional[str] = Field(default=None, alias="OPENAI_MODEL")
    anthropic_model: Optional[str] = Field(default=None, alias="ANTHROPIC_MODEL")
    gemini_model: Optional[str] = Field(default=None, alias="GEMINI_MODEL")
    perplexity_model: Optional[str] = Field(default=None, alias="PERPLEXITY_MODEL")

    # Orchestration limits
    max_in_flight_calls: int = Field(default=4, alias="MAX_IN_FLIGHT_CALLS")
    provider_call_timeout: float = Field(default=60.0, alias="PROVIDER_CALL_TIMEOUT")
    target_timeout: float = Field(default=180.0, alias="TARGET_TIMEOUT")
    session_timeout: float = Field(default=900.0, alias="SESSION_TIMEOUT")
    cancel_grace_period: float = Field(default=10.0, alias="CANCEL_GRACE_PERIOD")
    max_targets_per_session: int = Field(default=25, alias="MAX_TARGETS_PER_SESSION")
    max_list_length: int = Field(default=10, alias="AGGREGATION_MAX_LIST_LENGTH")

    # Resilience defaults
    retry_default_attempts: int = Field(default=3, alias="RETRY_DEFAULT_ATTEMPTS")
    retry_default_backoff_seconds: float = Field(default=0.5, alias="RETRY_DEFAULT_BACKOFF_SECONDS")
    retry_max_backoff_seconds: float = Field(default=30.0, alias="RETRY_MAX_BACKOFF_SECONDS")
    retry_max_total_wait_seconds: float = Field(default=60.0, alias="RETRY_MAX_TOTAL_WAIT_SECONDS")
    circuit_breaker_failure_threshold: int = Field(default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD")
    circuit_breaker_recovery_seconds: int = Field(default=60, alias="CIRCUIT_BREAKER_RECOVERY_SECONDS")
    circuit_breaker_half_open_successes: int = Field(
        default=1, alias="CIRCUIT_BREAKER_HALF_OPEN_SUCCESSES"
    )

    # Progress streaming
    progress_buffer_size: int = Field(default=100, alias="PROGRESS_BUFFER_SIZE")
    progress_history_size: int = Field(default=200, alias="PROGRESS_HISTORY_SIZE")

    # Session storage
    session_store: str = Field(default="memory", alias="SESSION_STORE")  # memory | sql
    max_sessions_in_memory: int = Field(default=1000, alias="MAX_SESSIONS_IN_MEMORY")
    session_retention_days: int = Field(default=30, alias="SESSION_RETENTION_DAYS")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./competitoragents.db",
        alias="DATABASE_URL",
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Application configuration
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_title: str = Field(default="Competitor Analysis Backend", alias="API_TITLE")
    api_version: str = Field(default="0.1.0", alias="API_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json | console

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate and normalize database URL."""
        # Convert sync SQLite URLs to async
        if v.startswith("sqlite:///") and "aiosqlite" not in v:
            v = v.replace("sqlite:///", "sqlite+aiosqlite:///")
        # Convert sync PostgreSQL URLs to async
        if v.startswith("postgresql://") and "asyncpg" not in v:
            v = v.replace("postgresql://", "postgresql+asyncpg://")
        return v

    @field_validator("session_store")
    @classmethod
    def validate_session_store(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("memory", "sql"):
            raise ValueError("SESSION_STORE must be 'memory' or 'sql'")
        return v

    @property
    def enabled_providers(self) -> List[str]:
        return _split_csv(self.analysis_providers)

    @property
    def disabled_provider_list(self) -> List[str]:
        return _split_csv(self.disabled_providers)

    @property
    def provider_api_keys(self) -> Dict[str, Optional[str]]:
        return {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
            "perplexity": self.perplexity_api_key,
        }

    @property
    def provider_model_overrides(self) -> Dict[str, Optional[str]]:
        return {
            "openai": self.openai_model,
            "anthropic": self.anthropic_model,
            "gemini": self.gemini_model,
            "perplexity": self.perplexity_model,
        }

    def orchestrator_config(self) -> "OrchestratorConfig":
        """Build the orchestrator configuration from these settings."""
        from competitoragents.providers.profiles import default_provider_profiles

        from ..core.resilience import RetryPolicy
        from ..services.aggregator import AggregationPolicy
        from ..services.orchestrator import OrchestratorConfig

        profiles = default_provider_profiles()
        return OrchestratorConfig(
            max_in_flight=self.max_in_flight_calls,
            attempt_timeout=self.provider_call_timeout,
            target_timeout=self.target_timeout,
            session_timeout=self.session_timeout,
            cancel_grace_period=self.cancel_grace_period,
            max_targets=self.max_targets_per_session,
            max_projected_cost_usd=self.max_projected_cost_usd,
            retry_policy=RetryPolicy(
                max_attempts=self.retry_default_attempts,
                initial_backoff=self.retry_default_backoff_seconds,
                max_backoff=self.retry_max_backoff_seconds,
                max_total_wait=self.retry_max_total_wait_seconds,
            ),
            aggregation=AggregationPolicy.from_profiles(
                profiles, max_list_length=self.max_list_length
            ),
            profiles=profiles,
        )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
