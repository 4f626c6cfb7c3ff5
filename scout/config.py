from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Scout"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # Search providers
    exa_api_key: str | None = None
    parallel_api_key: str | None = None
    serper_api_key: str | None = None

    # Enrichment / CRM providers
    apollo_api_key: str | None = None
    hubspot_access_token: str | None = None
    freshsales_api_key: str | None = None
    freshsales_domain: str | None = None

    # Signal extraction
    openai_api_key: str | None = None
    signal_model: str = "gpt-4o-mini"
    signal_temperature: float = 0.0
    signal_max_content_chars: int = 4000

    # Daily budgets (outbound calls per provider per UTC day)
    exa_daily_budget: int = 5
    parallel_daily_budget: int = 800
    serper_daily_budget: int = 100

    # Resilience
    provider_request_timeout_seconds: float = 4.0
    search_deadline_seconds: float = 20.0
    retry_max_retries: int = 2
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 5.0
    circuit_failure_threshold: int = 3
    circuit_open_seconds: float = 60.0

    # Health
    health_report_window_hours: float = 1.0
    health_routing_window_minutes: float = 5.0
    health_snapshot_ttl_seconds: float = 120.0
    health_call_log_size: int = 5000

    # Cache
    cache_dir: str = "data/cache"
    cache_size_limit_bytes: int = 1024 * 1024 * 1024
    cache_ttl_overrides: dict[str, int] = {}

    # Search pipeline
    search_default_results: int = 25
    search_name_results: int = 15
    enrichment_enabled: bool = True
    enrichment_batch_size: int = 5
    enrichment_max_concurrency: int = 3

    # Security
    cors_origins: list[str] = []

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "scout"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125

    @property
    def daily_budgets(self) -> dict[str, int]:
        """Per-provider daily call budgets keyed by provider id."""
        return {
            "exa": self.exa_daily_budget,
            "parallel": self.parallel_daily_budget,
            "serper": self.serper_daily_budget,
        }

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
