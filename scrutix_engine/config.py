"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="SCRUTIX_", extra="ignore"
    )

    # Service
    service_name: str = "scrutix-engine"
    log_level: str = "INFO"

    # AI providers
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    claude_model: str = "claude-sonnet-4-20250514"

    mistral_api_key: str = ""
    mistral_base_url: str = "https://api.mistral.ai"
    mistral_model: str = "mistral-small-latest"

    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1"

    # HTTP Client
    http_timeout_seconds: float = 60.0
    ai_max_retries: int = 3
    ai_backoff_base: float = 1.0  # Exponential backoff base in seconds

    # AI orchestration
    ai_batch_size: int = 50
    ai_max_concurrency: int = 3
    ai_call_timeout_seconds: float = 90.0

    # Currency conversion used in cost estimates
    usd_to_xaf: float = 615.0


settings = Settings()
