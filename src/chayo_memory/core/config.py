"""Configuration management."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # API Keys
    voyage_api_key: str = ""
    voyage_model: str = "voyage-3"
    embedding_dimensions: int | None = Field(
        default=None, description="Override the model's known dimension (e.g. for a custom deployment)"
    )

    # Vector store
    vector_store_backend: Literal["neo4j", "memory"] = "neo4j"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "password"
    neo4j_max_pool_size: int = 50

    # Ingestion
    min_message_length: int = Field(default=10, ge=1, description="Shorter messages are not worth remembering")
    max_chunk_tokens: int = Field(default=400, ge=16, description="Token budget per conversation chunk")
    embedding_batch_size: int = Field(default=64, ge=1, le=128)

    # Retrieval and conflict detection
    retrieval_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    retrieval_limit: int = Field(default=5, ge=1)
    conflict_threshold: float = Field(default=0.85, ge=-1.0, le=1.0)
    conflict_search_limit: int = Field(default=5, ge=1)
    default_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    serialize_updates: bool = True

    # Dashboard summary
    summary_recent_limit: int = Field(default=10, ge=1)

    # Client system prompt
    prompt_threshold: float = Field(default=0.8, ge=-1.0, le=1.0)
    prompt_chunk_limit: int = Field(default=5, ge=1)
    default_locale: str = "es"

    # App config
    debug: bool = False
    service_name: str = "chayo-memory"
    logfire_token: str | None = None
    instrument_fastapi: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # Ignore extra fields in .env file
    )


settings = Settings()
