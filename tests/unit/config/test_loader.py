"""Tests for agentcore.config.loader."""

import json
from pathlib import Path

import pytest

from agentcore.config import loader
from agentcore.config.loader import load_config
from agentcore.core.errors import ConfigError, ValidationError


@pytest.fixture
def fake_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the per-user config directory at a temp dir."""
    config_dir = tmp_path / ".agentcore"
    monkeypatch.setattr(loader, "get_config_dir", lambda: config_dir)
    return config_dir


class TestLoadConfig:
    """Tests for load_config()."""

    def test_defaults_without_files(self, fake_home: Path) -> None:
        config = load_config()

        assert config.runtime.model_name == "llama3"
        assert config.learning.min_messages == 4

    def test_home_config_used(self, fake_home: Path) -> None:
        fake_home.mkdir()
        (fake_home / "config.json").write_text(
            json.dumps({"runtime": {"model_name": "mistral"}}), encoding="utf-8"
        )

        assert load_config().runtime.model_name == "mistral"

    def test_explicit_path(self, fake_home: Path, tmp_path: Path) -> None:
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"retrieval": {"default_top_k": 9}}), encoding="utf-8")

        assert load_config(path).retrieval.default_top_k == 9

    def test_explicit_missing_path_fails(self, fake_home: Path, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.json")

    def test_overrides_deep_merge(self, fake_home: Path, tmp_path: Path) -> None:
        """Overrides replace single keys without dropping their siblings."""
        path = tmp_path / "custom.json"
        path.write_text(
            json.dumps({"runtime": {"model_name": "mistral", "max_retries": 5}}),
            encoding="utf-8",
        )

        config = load_config(path, overrides={"runtime": {"endpoint": "http://localhost:1234"}})

        assert config.runtime.model_name == "mistral"
        assert config.runtime.max_retries == 5
        assert config.runtime.endpoint == "http://localhost:1234"

    def test_invalid_values_fail(self, fake_home: Path, tmp_path: Path) -> None:
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"context": {"threshold_percent": 200}}), encoding="utf-8")

        with pytest.raises(ValidationError):
            load_config(path)
