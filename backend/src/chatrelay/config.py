"""Configuration management."""

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Database (PostgreSQL) - constructed from parts
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: str = "chatrelay"
    db_user: str = "chatrelay"
    db_password: str = ""

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from parts."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis cache (empty disables caching)
    redis_url: str = ""
    conversation_cache_ttl: int = 3600
    partial_buffer_ttl: int = 600
    router_cache_ttl: int = 300

    # Qdrant episodic memory (empty disables retrieval)
    qdrant_url: str = ""
    qdrant_api_key: str = ""
    qdrant_collection: str = "query_context"
    embedding_model: str = "text-embedding-3-small"

    # Provider credentials
    openai_api_key: str = ""
    gemini_api_key: str = ""
    deepseek_api_key: str = ""
    mistral_api_key: str = ""
    xai_api_key: str = ""
    groq_api_key: str = ""
    qwen_api_key: str = ""
    claude_oauth_token: str = ""  # OAuth token for Claude API

    # OpenAI-compatible vendor endpoints
    deepseek_base_url: str = "https://api.deepseek.com"
    mistral_base_url: str = "https://api.mistral.ai/v1"
    xai_base_url: str = "https://api.x.ai/v1"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    qwen_base_url: str = "https://dashscope-intl.aliyuncs.com/compatible-mode/v1"

    # Generation
    temperature: float = 0.7
    max_output_tokens: int = 2048
    use_mock_ai: bool = False  # Route every model to the mock provider

    # Models used for internal calls (cheap)
    summary_model: str = "gpt-4o-mini"
    classifier_model: str = ""  # Empty keeps classification local-only
    default_model: str = "gemini-2.5-flash"  # Used when routing fails; must be a free-tier model

    # Router
    classifier_confidence_threshold: float = 0.75
    router_max_fallbacks: int | None = None

    # Context assembly
    context_max_tokens: int = 4000
    context_window_size: int = 6
    context_summary_trigger: int = 6
    context_episodic_k: int = 5
    context_chars_per_token: int = 4

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8080"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


# Global settings instance
settings = Settings()
