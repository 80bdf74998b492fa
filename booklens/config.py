"""Application settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    database_url: str = "sqlite:///./booklens.db"
    upload_dir: str = "./uploads"
    public_base_url: str = "http://localhost:8000"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # Language model (any OpenAI-compatible chat completions endpoint)
    llm_api_key: str = ""
    llm_api_url: str = "https://api.together.xyz/v1/chat/completions"
    llm_model: str = "meta-llama/Llama-4-Scout-17B-16E-Instruct"
    llm_timeout_seconds: float = 60.0
    llm_max_tokens: int = 2000

    # Upload limits
    max_file_size_mb: int = 100

    # Ingestion
    chunk_size_words: int = 500
    epub_retry_rounds: int = 3

    # Retrieval
    search_max_results: int = 50
    max_context_words: int = 6000
    qa_max_chunks: int = 15

    # OpenTelemetry tracing configuration
    tracing_enabled: bool = False
    otlp_endpoint: str = ""  # empty = console exporter

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
