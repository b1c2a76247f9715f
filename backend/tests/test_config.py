"""Tests for settings loading."""

from pathlib import Path

import pytest

from message_search.core.config import Settings
from message_search.core.errors import ConfigurationError


def test_defaults_follow_match_function() -> None:
    settings = Settings()
    assert settings.match_count == 10
    assert settings.similarity_threshold == 0.7
    assert settings.embedding_dim == 1536


def test_yaml_and_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "\n".join(
            [
                "storage:",
                f"  db_path: {tmp_path / 'custom.db'}",
                "chunking:",
                "  max_chars: 500",
                "  overlap_chars: 50",
                "search:",
                "  similarity_threshold: 0.5",
                "auth:",
                "  tokens:",
                "    secret-token: alice",
            ]
        )
    )
    monkeypatch.delenv("MSGS_DB_PATH", raising=False)
    monkeypatch.setenv("MSGS_MATCH_COUNT", "25")
    settings = Settings.from_yaml(config)
    assert settings.db_path == tmp_path / "custom.db"
    assert settings.max_chunk_chars == 500
    assert settings.overlap_chars == 50
    assert settings.similarity_threshold == 0.5
    assert settings.match_count == 25
    assert settings.api_tokens == {"secret-token": "alice"}


def test_tokens_from_env_json(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MSGS_API_TOKENS", '{"t1": "alice"}')
    assert Settings.from_yaml().api_tokens == {"t1": "alice"}


def test_inconsistent_chunking_rejected() -> None:
    with pytest.raises(ConfigurationError):
        Settings(max_chunk_chars=100, overlap_chars=100)
