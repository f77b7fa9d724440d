from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "localfix-api"
    environment: str = "dev"
    store_backend: Literal["baas", "memory"] = "baas"
    baas_url: str | None = Field(default=None, validation_alias="BAAS_URL")
    baas_anon_key: str | None = Field(default=None, validation_alias="BAAS_ANON_KEY")
    baas_service_key: str | None = Field(default=None, validation_alias="BAAS_SERVICE_KEY")
    baas_timeout_seconds: float = 10.0
    session_cookie_name: str = "sb-access-token"
    database_url: str | None = None
    realtime_channel: str = "localfix_changes"
    recent_bookings_limit: int = 10
    dashboard_worker_id: str | None = None
    dashboard_report_interval_seconds: float = 30.0
    dashboard_retry_seconds: float = 1.0
    dashboard_max_backoff_seconds: float = 60.0
    otel_enabled: bool = True
    otel_service_name: str = "localfix-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="LOCALFIX_", extra="ignore", populate_by_name=True)


@lru_cache
def get_settings() -> Settings:
    return Settings()
