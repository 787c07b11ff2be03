from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5"
    database_url: str = "sqlite:///./quickquote.db"

    # Invoice defaults (overridable per user via SettingsStore)
    default_currency: str = "INR"
    default_tax_rate: float = 0.0
    audio_retention_days: int = 7  # 0 = keep audio forever
    audio_retention_hour: int = 3

    # Queue retry policy
    max_queue_retries: int = 3
    queue_retry_base_delay_ms: int = 1000

    # Per-request retry policy for the AI clients
    client_max_retries: int = 3
    client_retry_initial_delay_ms: int = 1000
    client_retry_max_delay_ms: int = 10000
    request_timeout_seconds: float = 30.0  # per SDK request, enforced by the clients
    stage_timeout_seconds: Optional[float] = None  # None = derived from the retry policy above
    processing_lease_ms: int = 600000

    # Sync orchestration
    sync_debounce_ms: int = 2000
    min_sync_interval_ms: int = 30000
    retry_sweep_seconds: int = 60
    connectivity_probe_host: str = "1.1.1.1"
    connectivity_probe_port: int = 443
    connectivity_poll_seconds: int = 5

    # HTTP API (python -m quickquote api)
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def validate_settings(settings: Settings) -> List[str]:
    """Return the names of required settings that are missing."""
    missing = []
    if not settings.openai_api_key:
        missing.append("OPENAI_API_KEY")
    if not settings.anthropic_api_key:
        missing.append("ANTHROPIC_API_KEY")
    return missing
