"""Runtime settings — defaults, optional YAML file, .env file and environment overrides."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .errors import ConfigError

CONFIG_ENV_VAR = "MANUAL_RAG_CONFIG"

LLM_MODES = ("OLLAMA", "LLAMACPP")


class Settings(BaseSettings):
    """All tunables for ingestion, retrieval and answer generation.

    Fields with an environment variable name it as their validation alias;
    the rest can still be set through their upper-cased field name.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    # Locations
    docs_dir: str = Field(default="./docs", validation_alias="DOCS_DIR")
    qdrant_url: str = Field(default="http://127.0.0.1:6333", validation_alias="QDRANT_URL")
    collection: str = Field(default="lincoln_docs", validation_alias="COLLECTION")

    # Embedding model
    embed_model: str = Field(default="BAAI/bge-small-en-v1.5", validation_alias="EMBED_MODEL")
    model_dir: str = Field(default="./models", validation_alias="MODEL_DIR")
    offline: bool = Field(default=False, validation_alias="HF_OFFLINE")
    embed_dim: int = Field(default=384, validation_alias="EMBED_DIM")
    embed_batch_size: int = Field(default=24, validation_alias="EMBED_BATCH")

    # Page acquisition
    min_text_chars: int = 30
    ocr_dpi: int = 300
    ocr_lang: str = "eng"
    ocr_psm: int = 6

    # Chunking tuned for manuals
    chunk_size: int = Field(default=900, validation_alias="CHUNK_CHARS")
    chunk_overlap: int = Field(default=120, validation_alias="CHUNK_OVERLAP")
    stable_ids: bool = Field(default=False, validation_alias="STABLE_IDS")

    # Retrieval funnel
    search_limit: int = 24
    score_floor: float = 0.45
    max_context: int = 6
    max_citations: int = 3
    synonym_groups: list[list[str]] = Field(
        default_factory=lambda: [["defog", "defrost", "demist"]]
    )

    # Service
    host: str = Field(default="127.0.0.1", validation_alias="HOST")
    port: int = Field(default=8010, validation_alias="PORT")

    # Completion backends
    llm_mode: str = Field(default="OLLAMA", validation_alias="LLM_MODE")
    ollama_url: str = Field(
        default="http://127.0.0.1:11434/api/chat", validation_alias="OLLAMA_URL"
    )
    ollama_model: str = Field(default="gemma3:4b", validation_alias="OLLAMA_MODEL")
    llm_url: str = Field(
        default="http://127.0.0.1:8080/v1/chat/completions", validation_alias="LLM_URL"
    )
    llm_model: str = Field(default="gemma-3-4b-it", validation_alias="LLM_MODEL")
    llm_timeout: float = Field(default=120.0, validation_alias="LLM_TIMEOUT")
    temperature: float = 0.2
    max_tokens: int = 512
    num_ctx: int = 8192

    @field_validator("llm_mode")
    @classmethod
    def _upper_mode(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Init values carry the YAML file, so the environment outranks them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def env_var_names() -> list[str]:
    """Environment variable names Settings reads, one per field."""
    return [
        (info.validation_alias if isinstance(info.validation_alias, str) else name).upper()
        for name, info in Settings.model_fields.items()
    ]


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError("Config YAML must be a mapping at the top level.")
    for key in data:
        if key not in Settings.model_fields:
            raise ConfigError(f"Unknown config key: {key!r}")
    return data


def load_settings(
    path: str | Path | None = None,
    env_file: str | Path | None = ".env",
) -> Settings:
    """Build Settings from defaults, an optional YAML file, a .env file, then the environment.

    Args:
        path: Optional YAML file. Falls back to $MANUAL_RAG_CONFIG when None.
        env_file: dotenv file to read if it exists; None skips it.

    Raises:
        FileNotFoundError: If an explicit config file does not exist.
        ConfigError: If the file is not a mapping, names an unknown key,
            or a value cannot be converted.
    """
    if path is None and os.environ.get(CONFIG_ENV_VAR):
        path = os.environ[CONFIG_ENV_VAR]

    data = _read_yaml(Path(path)) if path is not None else {}

    try:
        return Settings(_env_file=env_file, **data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e


def validate_settings(settings: Settings) -> list[str]:
    """Validate settings and return a list of error messages (empty = valid)."""
    errors: list[str] = []

    if settings.chunk_size <= 0:
        errors.append(f"chunk_size must be positive, got {settings.chunk_size}")
    elif not 0 <= settings.chunk_overlap < settings.chunk_size / 2:
        errors.append(
            f"chunk_overlap must be in [0, chunk_size/2), got {settings.chunk_overlap}"
        )

    if settings.embed_dim <= 0:
        errors.append(f"embed_dim must be positive, got {settings.embed_dim}")
    if settings.embed_batch_size <= 0:
        errors.append(f"embed_batch_size must be positive, got {settings.embed_batch_size}")
    if settings.search_limit <= 0:
        errors.append(f"search_limit must be positive, got {settings.search_limit}")
    if settings.max_context <= 0:
        errors.append(f"max_context must be positive, got {settings.max_context}")
    if settings.max_citations <= 0:
        errors.append(f"max_citations must be positive, got {settings.max_citations}")
    if not -1.0 <= settings.score_floor <= 1.0:
        errors.append(f"score_floor must be within [-1, 1], got {settings.score_floor}")
    if settings.llm_mode.upper() not in LLM_MODES:
        errors.append(
            f"llm_mode must be one of {', '.join(LLM_MODES)}, got {settings.llm_mode!r}"
        )

    for i, group in enumerate(settings.synonym_groups):
        if not group or not all(isinstance(w, str) and w for w in group):
            errors.append(f"synonym_groups[{i}] must be a non-empty list of words")

    return errors
