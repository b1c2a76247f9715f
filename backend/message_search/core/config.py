"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import orjson
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from message_search.core.errors import ConfigurationError

ENV_PREFIX = "MSGS_"
DEFAULT_CONFIG_PATH = Path("~/.config/message-search/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "batch_size"): "embed_batch_size",
    ("embeddings", "max_attempts"): "embed_max_attempts",
    ("embeddings", "backoff_base"): "embed_backoff_base",
    ("embeddings", "backoff_max"): "embed_backoff_max",
    ("embeddings", "timeout"): "embed_timeout_s",
    ("chunking", "max_chars"): "max_chunk_chars",
    ("chunking", "overlap_chars"): "overlap_chars",
    ("chunking", "lookback_chars"): "lookback_chars",
    ("index", "exact_search_limit"): "exact_search_limit",
    ("index", "lists"): "ivf_lists",
    ("index", "probes"): "ivf_probes",
    ("search", "match_count"): "match_count",
    ("search", "similarity_threshold"): "similarity_threshold",
    ("sync", "workers"): "sync_workers",
    ("sync", "page_size"): "fetch_page_size",
    ("sync", "fetch_timeout"): "fetch_timeout_s",
    ("sync", "export_dir"): "export_dir",
    ("auth", "tokens"): "api_tokens",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".message-search" / "messages.db")
    embedding_model: str = "hashed-bow"
    embedding_dim: int = Field(default=1536, ge=1)
    embed_batch_size: int = Field(default=64, ge=1)
    embed_max_attempts: int = Field(default=5, ge=1)
    embed_backoff_base: float = Field(default=0.5, ge=0)
    embed_backoff_max: float = Field(default=30.0, ge=0)
    embed_timeout_s: float = Field(default=30.0, gt=0)
    fetch_timeout_s: float = Field(default=60.0, gt=0)
    max_chunk_chars: int = 1000
    overlap_chars: int = 200
    lookback_chars: int | None = None
    exact_search_limit: int = Field(default=5000, ge=1)
    ivf_lists: int = Field(default=100, ge=1)
    ivf_probes: int = Field(default=8, ge=1)
    match_count: int = Field(default=10, ge=1)
    similarity_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    sync_workers: int = Field(default=4, ge=1)
    fetch_page_size: int = Field(default=100, ge=1)
    export_dir: Path = Field(default=Path.home() / ".message-search" / "exports")
    api_tokens: dict[str, str] = Field(default_factory=dict)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "export_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("path settings must be a path or string")

    @field_validator("api_tokens", mode="before")
    @classmethod
    def _parse_tokens(cls, value: Any) -> Any:
        # MSGS_API_TOKENS carries a JSON object
        if isinstance(value, (str, bytes)):
            return orjson.loads(value)
        return value

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if not self.max_chunk_chars > self.overlap_chars >= 0:
            raise ConfigurationError(
                "max_chunk_chars must exceed overlap_chars and overlap_chars must be >= 0",
                {"max_chunk_chars": self.max_chunk_chars, "overlap_chars": self.overlap_chars},
            )
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            # mapped leaves may themselves be mappings (auth.tokens)
            flat[mapped_key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with MSGS_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
