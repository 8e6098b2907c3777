"""Configuration for socialdata."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Data layer settings."""

    # Backend
    backend_url: str = "http://localhost:54321"
    backend_anon_key: Optional[str] = None

    # Queries
    query_timeout_ms: int = 15000
    query_max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 5000  # Backoff cap

    # Mutations (one retry at most)
    mutation_timeout_ms: int = 30000
    mutation_max_attempts: int = 2

    # Focus/visibility regain
    refetch_on_regain_focus: bool = False
    focus_debounce_ms: int = 1000
    focus_jitter_ms: int = 2000  # Spreads refetches when many queries regain focus

    # Connection monitor
    health_check_interval_s: float = 30.0
    health_check_timeout_ms: int = 5000
    slow_response_ms: int = 3000

    class Config:
        env_prefix = "SOCIALDATA_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
