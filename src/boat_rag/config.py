"""Configuration models for the boat QA service."""

from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from boat_rag.errors import ConfigurationError


class Settings(BaseSettings):
    """Environment-driven settings (prefix ``BOAT_RAG_``)."""

    model_config = SettingsConfigDict(
        env_prefix="BOAT_RAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Evidence sources and orchestration
    asset_search_enabled: bool = True
    playbook_search_enabled: bool = True
    knowledge_search_enabled: bool = True
    vector_search_enabled: bool = True
    web_search_enabled: bool = True
    telemetry_enabled: bool = True
    fts_enabled: bool = True
    direct_lookup_enabled: bool = True

    # Context budget
    context_max_chars: int = Field(default=6000, ge=500)
    context_min_break: int = Field(default=1200, ge=0)
    retrieval_top_k: int = Field(default=20, ge=1, le=50)

    # Web evidence
    web_parts_threshold: int = Field(default=4, ge=0)
    web_top_k: int = Field(default=2, ge=1, le=10)
    world_allowlist: list[str] = Field(default_factory=list)
    serpapi_key: str | None = Field(
        default=None, validation_alias=AliasChoices("BOAT_RAG_SERPAPI_KEY", "SERPAPI_API_KEY")
    )
    fetch_timeout_seconds: float = Field(default=20.0, gt=0.0)

    # Vector partitions and embeddings
    private_namespace: str = "default"
    world_namespace: str = "world"
    embedding_model: str = "text-embedding-3-large"
    embedding_dimension: int = Field(default=3072, ge=8)
    chunk_max_chars: int = Field(default=3500, ge=200)
    chunk_overlap: int = Field(default=200, ge=0)

    # Generation
    openai_api_key: str | None = Field(
        default=None, validation_alias=AliasChoices("BOAT_RAG_OPENAI_API_KEY", "OPENAI_API_KEY")
    )
    chat_model: str = "gpt-4o-mini"
    prompt_dir: str | None = None

    # Cache, telemetry, tracing
    cache_ttl_minutes: int = Field(default=180, ge=1)
    cache_evidence_cap: int = Field(default=16, ge=1)
    trace_capacity: int = Field(default=200, ge=1)
    log_level: str = "INFO"

    # Datastore collections
    assets_table: str = "boat_assets"
    playbooks_table: str = "standards_playbooks"
    systems_table: str = "boat_systems"
    knowledge_table: str = "boat_knowledge"
    conversations_table: str = "boat_conversations"
    cache_table: str = "answers_cache"


def validate_settings(settings: Settings) -> Settings:
    """Fail fast on configuration the pipeline cannot run with."""
    problems: list[str] = []
    if not settings.embedding_model.strip():
        problems.append("embedding_model must not be empty")
    if not settings.private_namespace.strip():
        problems.append("private_namespace must not be empty")
    if settings.private_namespace == settings.world_namespace:
        problems.append(
            f"private_namespace and world_namespace must differ (both '{settings.world_namespace}')"
        )
    if settings.chunk_overlap >= settings.chunk_max_chars:
        problems.append("chunk_overlap must be smaller than chunk_max_chars")
    if problems:
        raise ConfigurationError(problems)
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
