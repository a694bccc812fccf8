from __future__ import annotations

import os
from unittest.mock import patch

import pytest
import yaml

from agentwire.engine.config import ClientConfig
from agentwire.engine.yaml_config import load_yaml_config


def test_defaults() -> None:
    cfg = ClientConfig()
    assert cfg.server_url == "http://localhost:4096"
    assert cfg.quiet_period_seconds == 30.0
    assert cfg.default_provider == "opencode"
    assert "recommended" in cfg.positive_keywords
    assert "skip" in cfg.negative_keywords


def test_from_env_overrides(tmp_path) -> None:
    env = {
        "AGENTWIRE_SERVER_URL": "http://agent:9000/",
        "AGENTWIRE_PASSWORD": "secret",
        "AGENTWIRE_DEFAULT_MODEL": "anthropic/claude-sonnet-4-5",
        "AGENTWIRE_QUIET_PERIOD": "12.5",
        "AGENTWIRE_HEALTH_RETRIES": "4",
        "AGENTWIRE_DATA_DIR": str(tmp_path),
    }
    with patch.dict(os.environ, env, clear=True):
        cfg = ClientConfig.from_env()
    assert cfg.server_url == "http://agent:9000"
    assert cfg.password == "secret"
    assert cfg.username is None
    assert cfg.default_model == "anthropic/claude-sonnet-4-5"
    assert cfg.quiet_period_seconds == 12.5
    assert cfg.health_check_retries == 4
    assert cfg.transcripts_dir == tmp_path / "transcripts"
    assert cfg.preferences_db_path == tmp_path / "preferences.db"


def test_password_not_in_repr() -> None:
    assert "hunter2" not in repr(ClientConfig(password="hunter2"))


def test_yaml_config_sections(tmp_path) -> None:
    config_path = tmp_path / "agentwire.yaml"
    config_path.write_text(
        "server:\n"
        "  url: http://agent:4096/\n"
        "  request_timeout_seconds: 10\n"
        "auth:\n"
        "  username: opencode\n"
        "  password: \"${AGENTWIRE_TEST_PASSWORD}\"\n"
        "turn:\n"
        "  default_model: openai/gpt-4o\n"
        "  quiet_period_seconds: 45\n"
        "questions:\n"
        "  cancel_reply_message: Stopped\n"
        "  positive_keywords: [Fast, fast, safe]\n"
        "storage:\n"
        f"  data_dir: {tmp_path / 'data'}\n"
        "logging:\n"
        "  level: DEBUG\n"
    )
    with patch.dict(os.environ, {"AGENTWIRE_TEST_PASSWORD": "pw"}):
        cfg = load_yaml_config(config_path)

    assert cfg.server_url == "http://agent:4096"
    assert cfg.request_timeout_seconds == 10.0
    assert (cfg.username, cfg.password) == ("opencode", "pw")
    assert cfg.default_model == "openai/gpt-4o"
    assert cfg.quiet_period_seconds == 45.0
    assert cfg.cancel_reply_message == "Stopped"
    assert cfg.positive_keywords == ["fast", "safe"]
    assert cfg.negative_keywords == ClientConfig().negative_keywords
    assert cfg.data_dir == str(tmp_path / "data")
    assert cfg.log_level == "DEBUG"


def test_yaml_unset_env_password_stays_unset(tmp_path) -> None:
    config_path = tmp_path / "agentwire.yaml"
    config_path.write_text("auth:\n  password: \"${AGENTWIRE_DEFINITELY_UNSET}\"\n")
    with patch.dict(os.environ, {}, clear=True):
        cfg = load_yaml_config(config_path)
    assert cfg.password is None


def test_empty_yaml_gives_defaults(tmp_path) -> None:
    config_path = tmp_path / "empty.yaml"
    config_path.write_text("")
    assert load_yaml_config(config_path) == ClientConfig()


def test_yaml_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "missing.yaml")

    bad = tmp_path / "bad.yaml"
    bad.write_text("server: [unclosed\n")
    with pytest.raises(yaml.YAMLError):
        load_yaml_config(bad)

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just a string\n")
    with pytest.raises(ValueError, match="mapping"):
        load_yaml_config(scalar)
