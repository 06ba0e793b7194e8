"""Application settings loaded from environment variables via pydantic-settings.

Values come from (highest priority first) environment variables, then the
``.env`` file in the working directory, then the defaults below.  Field
``openai_api_key`` maps to ``OPENAI_API_KEY`` and so on.

Queue tuning (workers, rate limits, retries) is not here; it lives in
``config/queues.yaml`` and is read by :mod:`course_ingest.config.loader`.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """course_ingest settings.  Environment variables override defaults."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Generative model / embeddings ===
    # Empty key = structuring disabled and local hash embeddings used.
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_text_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_provider: str = "auto"  # "auto", "openai" or "hash"
    hash_embedding_dimension: int = 384

    # === Timeouts (seconds) ===
    llm_timeout_seconds: float = 60.0
    embedding_timeout_seconds: float = 30.0

    # === Extraction ===
    extractor_max_pages: int = 100
    min_extracted_chars: int = 50
    max_extracted_chars: int = 50_000

    # === Content structuring ===
    structurer_enabled: bool = True
    structurer_min_input_chars: int = 100
    structurer_max_input_chars: int = 12_000
    structurer_temperature: float = 0.2
    structurer_max_tokens: int = 4000

    # === Chunking / embedding ===
    chunk_size: int = 700
    chunk_overlap: int = 100
    embedding_batch_size: int = 64
    embedding_concurrency: int = 4
    max_embedding_chunks: int = 500

    # === Storage ===
    database_path: str = "data/course_ingest.db"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection_prefix: str = "course_"
    queue_config_path: str = "config/queues.yaml"
    queue_poll_interval_seconds: float = 1.0

    # === Notifications ===
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 5.0

    # === App ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"
    run_workers_in_app: bool = True

    def use_openai_embeddings(self) -> bool:
        """Resolve ``embedding_provider=auto`` against the configured key."""
        if self.embedding_provider == "hash":
            return False
        if self.embedding_provider == "openai":
            return True
        return bool(self.openai_api_key)
