"""Application configuration with sensible defaults.

Settings are read once at startup (see ``Settings.from_env``) and passed
explicitly to every component. Environment variable names are the upper-case
field names, e.g. ``CHUNK_SIZE`` or ``GIGACHAT_API_KEY``.
"""
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from docrag.errors import InvalidConfig


class Settings(BaseModel):
    """Validated pipeline configuration."""

    # Provider selection (GIGACHAT or OPENROUTER)
    embedding_provider: str = "GIGACHAT"

    # GigaChat
    gigachat_api_key: Optional[str] = None
    gigachat_base_url: str = "https://gigachat.devices.sberbank.ru/api/v1"
    gigachat_embedding_model: str = "Embeddings"
    gigachat_chat_model: str = "GigaChat"
    gigachat_client_id: Optional[str] = None
    gigachat_verify_ssl: bool = True

    # OpenRouter
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: Optional[str] = None
    openrouter_chat_model: str = "openai/gpt-3.5-turbo"
    openrouter_referer: Optional[str] = None

    # Vector store
    use_chroma_db: bool = False
    chroma_url: str = "http://localhost:8000/api/v2"
    chroma_tenant: str = "default-tenant"
    chroma_database: str = "default-db"
    chroma_collection: str = "gigachat_embeddings"

    # RAG parameters (character-based)
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    retrieval_top_k: Optional[int] = Field(default=None, gt=0)    # None = provider profile
    max_context_chars: Optional[int] = Field(default=None, gt=0)  # None = provider profile
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    http_timeout: float = Field(default=60.0, gt=0)

    # Files
    document_path: Path = Path("document.html")
    embedded_chunks_path: Path = Path("embedded_chunks.json")

    # Logging
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"CHUNK_OVERLAP ({self.chunk_overlap}) must be less than "
                f"CHUNK_SIZE ({self.chunk_size})"
            )
        return self

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Validated Settings

        Raises:
            InvalidConfig: If any value is malformed or violates a constraint
        """
        env = os.environ if env is None else env

        values = {}
        for name in cls.model_fields:
            raw = env.get(name.upper())
            # Empty string counts as unset
            if raw is not None and raw.strip():
                values[name] = raw.strip()

        try:
            return cls(**values)
        except ValidationError as e:
            raise InvalidConfig(f"Invalid configuration: {e}") from e
