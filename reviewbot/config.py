"""
Application configuration management.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis (key-value store and review queue)
    redis_url: str = "redis://localhost:6379/0"

    # Webhook
    webhook_secret: str

    # GitHub
    github_api_url: str = "https://api.github.com"
    github_app_id: Optional[str] = None
    github_private_key: Optional[str] = None
    github_token: Optional[str] = None  # Used instead of app auth when set
    bot_login: Optional[str] = None
    github_timeout_seconds: float = 15.0

    # LLM (OpenAI-compatible chat completions endpoint)
    llm_api_key: str
    llm_base_url: str = "https://models.inference.ai.azure.com"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 2000
    llm_timeout_seconds: float = 60.0

    # Review generation
    max_diff_bytes: int = 500_000
    continuation_delay_seconds: float = 1.0

    # Ingestion guards
    dedup_ttl_seconds: int = 86400
    rate_limit_per_window: int = 60
    rate_limit_window_ms: int = 60_000

    # Queue
    queue_max_retries: int = 3
    queue_retry_base_delay: float = 5.0
    queue_retry_max_delay: float = 300.0

    # Application
    log_level: str = "INFO"
    task_timeout_seconds: int = 600
    max_workers: int = 3

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
