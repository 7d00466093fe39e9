"""Tests for YAML configuration loading."""

from __future__ import annotations

import tempfile
from pathlib import Path

import yaml

from textstream.config import StreamerConfig, load_config, parse_config
from textstream.retry import RetryPolicy
from textstream.types import DeliveryMode, TypingMode


def _write_yaml(data: dict) -> str:
    f = tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False)
    yaml.dump(data, f)
    f.close()
    return f.name


class TestDefaults:
    def test_defaults(self):
        config = StreamerConfig()
        assert config.endpoint.endswith("/api/llm/openai/text2text/streaming")
        assert config.typing_mode is TypingMode.WORD
        assert config.mode is DeliveryMode.ANIMATED
        assert config.speed_ms == 80
        assert config.retry == RetryPolicy(500, 10_000, 4)

    def test_missing_explicit_path_uses_defaults(self):
        config = load_config("/nonexistent/textstream.yaml")
        assert config == StreamerConfig()

    def test_no_file_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            "textstream.config._SEARCH_PATHS", [Path("./textstream.yaml")],
        )
        assert load_config() == StreamerConfig()


class TestLoading:
    def test_full_file(self):
        path = _write_yaml({
            "endpoint": "https://example.com/stream",
            "typing_mode": "sentence",
            "mode": "stream",
            "speed_ms": 20,
            "timeout": 30,
            "headers": {"Authorization": "Bearer abc", "X-Retry": 1},
            "retry": {"base_delay_ms": 100, "max_delay_ms": 1000, "max_attempts": 2},
        })
        try:
            config = load_config(path)
        finally:
            Path(path).unlink()

        assert config.endpoint == "https://example.com/stream"
        assert config.typing_mode is TypingMode.SENTENCE
        assert config.mode is DeliveryMode.STREAM
        assert config.speed_ms == 20
        assert config.timeout == 30
        assert config.headers == {"Authorization": "Bearer abc", "X-Retry": "1"}
        assert config.retry == RetryPolicy(100, 1000, 2)

    def test_empty_file(self):
        f = tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False)
        f.close()
        try:
            assert load_config(f.name) == StreamerConfig()
        finally:
            Path(f.name).unlink()

    def test_discovered_in_cwd(self, tmp_path, monkeypatch):
        (tmp_path / "textstream.yaml").write_text("speed_ms: 5\n")
        monkeypatch.chdir(tmp_path)
        assert load_config().speed_ms == 5


class TestParseConfig:
    def test_invalid_enum_falls_back(self):
        config = parse_config({"typing_mode": "paragraph", "mode": "teletype"})
        assert config.typing_mode is TypingMode.WORD
        assert config.mode is DeliveryMode.ANIMATED

    def test_invalid_retry_falls_back(self):
        config = parse_config({"retry": {"base_delay_ms": 500, "max_delay_ms": 10}})
        assert config.retry == RetryPolicy()

    def test_partial_retry_keeps_other_defaults(self):
        config = parse_config({"retry": {"max_attempts": 1}})
        assert config.retry == RetryPolicy(500, 10_000, 1)
