"""Runtime configuration for the docsense services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="docsense_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
    sqlite_path: Path = Path("./data/docsense.db")

    chroma_persist_dir: Path = Path("./.chroma")
    chroma_chunk_collection: str = "docsense-chunks"
    chroma_document_collection: str = "docsense-documents"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False

    # Embeddings. The fallback embedding is always 384-dimensional, so the
    # configured model must produce vectors of the same size.
    embedding_provider: Literal["huggingface", "local", "none"] = "none"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dim: int = 384
    embedding_concurrency: int = 4
    embedding_fallback_enabled: bool = True
    huggingface_api_key: str | None = None
    huggingface_api_url: str = "https://router.huggingface.co/hf-inference/models"
    embedding_device: str | None = None

    generator_provider: Literal["gemini", "template"] = "template"
    generator_model: str = "gemini-1.5-flash"
    generator_temperature: float = 0.3
    gemini_api_key: str | None = None
    gemini_api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    provider_timeout_seconds: float = 60.0

    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_jitter_seconds: float = 1.0

    chunk_max_length: int = 1000
    chunk_overlap: int = 200

    retrieval_limit: int = 5
    retrieval_similarity_threshold: float = 0.0
    retrieval_keyword_similarity: float = 0.7
    retrieval_fallback_similarity: float = 0.5
    retrieval_keyword_from_query: bool = True

    decomposition_max_subqueries: int = 5
    decomposition_include_original: bool = True

    similar_documents_threshold: float = 0.7
    similar_documents_limit: int = 5

    history_turns: int = 10
    source_excerpt_chars: int = 200
    tag_limit: int = 10
    tag_context_chunks: int = 5

    # API & upload safety
    api_key: str | None = None  # if set, required in X-API-Key header
    max_upload_size_mb: int = 25
    allowed_ingest_domains: tuple[str, ...] | str = ()  # empty means block external URLs
    max_download_size_mb: int = 25

    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "DELETE", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def allowed_ingest_domains_tuple(self) -> tuple[str, ...]:
        value = self.allowed_ingest_domains
        if isinstance(value, tuple):
            return value
        return tuple(part.strip() for part in value.split(",") if part.strip())


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
