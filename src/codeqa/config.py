import os
from pathlib import Path
from typing import Literal

import yaml
from loguru import logger
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingConfig(BaseModel):
    """Embedding provider selection and remote API parameters."""

    # auto: remote when an API key is available, otherwise keyword-only
    provider: Literal["auto", "remote", "local", "none"] = "auto"
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "text-embedding-3-small"
    max_chars: int = 8000
    batch_delay: float = 0.1
    timeout: float = 30.0
    local_dimension: int = 256


class RerankConfig(BaseModel):
    """Remote reranking service (Cohere-compatible)."""

    api_key: str = ""
    base_url: str = "https://api.cohere.com"
    model: str = "rerank-english-v3.0"
    timeout: float = 15.0


class LLMConfig(BaseModel):
    """Remote answer-generation service (OpenAI-compatible chat completions)."""

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    temperature: float = 0.3
    max_tokens: int = 1024
    timeout: float = 60.0


class Settings(BaseSettings):
    """Global configuration for the codeqa application."""

    # General System
    data_dir: str = "./.codeqa"
    batch_size: int = 100
    log_level: str = "INFO"
    log_serialize: bool = False

    # Vector storage
    vector_backend: str = "memory"
    db_path: str = "./.codeqa/lancedb"
    table_name: str = "code_chunks"

    # Retrieval sizes
    search_top_k: int = 5
    answer_candidates: int = 8
    rerank_top_k: int = 5

    # Remote services
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    rerank: RerankConfig = Field(default_factory=RerankConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    model_config = SettingsConfigDict(
        env_prefix="CODEQA_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )


_SECTIONS: dict[str, type[BaseModel]] = {
    "embedding": EmbeddingConfig,
    "rerank": RerankConfig,
    "llm": LLMConfig,
}


def load_settings(config_file: str | None = None) -> Settings:
    """Loads base settings and overrides them from config.yaml."""
    base_settings = Settings()

    if config_file is None:
        config_file = os.getenv("CODEQA_CONFIG_FILE", "config.yaml")

    yaml_path = Path(config_file)
    if yaml_path.exists():
        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        # Override System configuration
        if isinstance(data.get("system"), dict):
            for key, value in data["system"].items():
                if hasattr(base_settings, key) and key not in _SECTIONS:
                    setattr(base_settings, key, value)

        # Override remote service sections, keeping unspecified values
        for section, model in _SECTIONS.items():
            if isinstance(data.get(section), dict):
                current = getattr(base_settings, section).model_dump()
                setattr(base_settings, section, model(**{**current, **data[section]}))
    else:
        logger.warning("Configuration file '{}' not found, using defaults", yaml_path)

    # Provider-native environment variables as a last resort
    if not base_settings.embedding.api_key:
        base_settings.embedding.api_key = os.getenv("OPENAI_API_KEY", "")
    if not base_settings.llm.api_key:
        base_settings.llm.api_key = os.getenv("OPENAI_API_KEY", "")
    if not base_settings.rerank.api_key:
        base_settings.rerank.api_key = os.getenv("COHERE_API_KEY", "")

    return base_settings
