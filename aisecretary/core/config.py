from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "aisecretary"
    log_level: str = "INFO"

    # Redis connection for all tenant-scoped records, indexes and counters.
    redis_url: str = "redis://localhost:6379/0"
    # Select the key-value backend (redis or memory for tests/local dev).
    store_backend: str = "redis"
    # Day boundaries and minute-of-day math use this zone for calendar and due-date indexes.
    business_timezone: str = "Asia/Tokyo"

    # Retention windows for primary records and derived keys.
    task_ttl_days: int = 180
    event_ttl_days: int = 90
    event_cancellation_ttl_days: int = 30
    analysis_ttl_s: int = 86400
    usage_ttl_days: int = 60
    reminder_ttl_days: int = 7
    instruction_ttl_days: int = 30
    pending_action_ttl_days: int = 7
    calendar_token_ttl_days: int = 30
    # Cap list-shaped keys so they do not grow without bound.
    message_list_max: int = 1000
    plan_history_max: int = 50
    thinking_log_max: int = 100
    # How many past days get scanned for overdue tasks.
    overdue_lookback_days: int = 7

    # Classifier provider selection: openai or fake for local development.
    llm_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com/v1"

    # Chat provider selection: line or fake (records outgoing messages).
    chat_provider: str = "line"
    line_channel_access_token: str | None = None
    # Verify X-Line-Signature on webhook deliveries when a secret is configured.
    line_channel_secret: str | None = None
    line_api_base_url: str = "https://api.line.me/v2/bot"

    # Google OAuth client used for executive calendar linking.
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    google_token_url: str = "https://oauth2.googleapis.com/token"
    google_calendar_api_url: str = "https://www.googleapis.com/calendar/v3"
    # Base URL used to build OAuth redirect URIs.
    app_base_url: str = "http://localhost:8000"

    # Centralize external call timeouts for integrations (ms).
    ext_call_timeout_ms: int = 8000
    # Retry transient integration failures for a bounded number of attempts.
    ext_retry_max_attempts: int = 2
    # Base backoff between retry attempts (ms), jittered per call.
    ext_retry_backoff_ms: int = 200


@lru_cache
def get_settings() -> Settings:
    return Settings()
