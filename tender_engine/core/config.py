"""Configuration management for the Tender Analysis Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Environment
    ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Generation providers (each one is optional; a provider without
    # credentials is simply skipped by the cascade)
    GEMINI_API_KEY: str | None = Field(default=None, description="Google Gemini API key")
    GEMINI_MODEL: str = Field(default="gemini-2.0-flash", description="Gemini model name")
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    ANTHROPIC_MODEL: str = Field(
        default="claude-3-5-haiku-20241022", description="Anthropic model name"
    )
    NVIDIA_API_KEY: str | None = Field(default=None, description="NVIDIA NIM API key")
    NVIDIA_BASE_URL: str = Field(
        default="https://integrate.api.nvidia.com/v1",
        description="OpenAI-compatible base URL for NVIDIA NIM",
    )
    NVIDIA_MODEL: str = Field(
        default="meta/llama-3.3-70b-instruct", description="NVIDIA NIM model name"
    )
    OLLAMA_BASE_URL: str | None = Field(default=None, description="Ollama server URL")
    OLLAMA_MODEL: str = Field(default="llama3.1", description="Ollama model name")
    GENERATION_MAX_TOKENS: int = Field(default=8000, description="Max output tokens per call")
    GENERATION_TEMPERATURE: float = Field(default=0.3, description="Sampling temperature")
    PROVIDER_TIMEOUT_SECONDS: float = Field(
        default=90.0, description="Per-attempt timeout for every generation provider"
    )

    # Cascade ordering (comma-separated provider names)
    PIPELINE_PROVIDER_ORDER: str = Field(
        default="gemini,nvidia,ollama",
        description="Provider order for structured agent calls (parser, analyst, reviewer)",
    )
    WRITER_PROVIDER_ORDER: str = Field(
        default="gemini,nvidia,ollama", description="Provider order for section drafting"
    )
    BATCH_PROVIDER_ORDER: str = Field(
        default="gemini,ollama,nvidia", description="Provider order for single-pass batch analysis"
    )

    # Web enrichment
    SERPAPI_API_KEY: str | None = Field(default=None, description="SerpAPI key for buyer news")

    # Interactive pipeline limits
    MAX_UPLOAD_BYTES: int = Field(default=20 * 1024 * 1024, description="Max PDF upload size")
    MAX_PARSER_CHARS: int = Field(default=30_000, description="Document chars sent to the parser")
    EVENT_QUEUE_SIZE: int = Field(default=256, description="Bounded event queue size per run")
    AI_RATE_LIMIT_PER_MINUTE: int = Field(default=10, description="AI endpoint requests per minute")

    # Batch scheduler
    BATCH_MAX_DURATION_SECONDS: int = Field(
        default=300, description="Hard execution limit of the batch invocation"
    )
    BATCH_SAFETY_MARGIN_SECONDS: int = Field(
        default=30, description="Time reserved to flush state before the hard limit"
    )
    BATCH_ITEM_CAP_SECONDS: int = Field(default=120, description="Soft time cap per job")
    BATCH_PACING_SECONDS: float = Field(
        default=5.0, description="Delay between jobs to stay under provider RPM"
    )
    BATCH_MAX_RETRIES: int = Field(default=3, description="Failures before a job is abandoned")
    BATCH_LEASE_SECONDS: int = Field(
        default=600, description="Lease length on a claimed job before it counts as stale"
    )
    MAX_DOCUMENT_BYTES: int = Field(
        default=25 * 1024 * 1024, description="Max fetched document size"
    )
    MAX_ANALYSIS_CHARS: int = Field(
        default=80_000, description="Document chars sent to single-pass analysis"
    )

    # Batch trigger authentication
    WORKER_AUTH_TOKEN: str | None = Field(default=None, description="Internal worker bearer token")
    CRON_SECRET: str | None = Field(default=None, description="Scheduled trigger secret")
    WORKER_AUTH_DISABLED: bool = Field(
        default=False, description="Accept unauthenticated worker requests (local development only)"
    )

    def provider_order(self, value: str) -> list[str]:
        """Split a comma-separated provider order setting."""
        return [name.strip().lower() for name in value.split(",") if name.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
