import logging

import pytest

from pushgate.config import DEFAULT_CACHE_PATH, DEFAULT_DENYLIST_PATH, load_settings


def test_defaults():
    settings = load_settings()
    assert settings.denylist_path == DEFAULT_DENYLIST_PATH
    assert settings.cache_path == DEFAULT_CACHE_PATH
    assert settings.template_path is None
    assert settings.annotation_formatter is None
    assert settings.log_level == "WARNING"


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("PUSHGATE_DENYLIST_PATH", "hooks/denylist")
    monkeypatch.setenv("PUSHGATE_FORMATTER_TIMEOUT", "2.5")
    settings = load_settings()
    assert settings.denylist_path == "hooks/denylist"
    assert settings.formatter_timeout == 2.5


def test_yaml_overrides_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("PUSHGATE_CACHE_PATH", "env.db")
    (tmp_path / "pushgate.yaml").write_text(
        "pushgate:\n  cache_path: yaml.db\n  annotation_formatter: fmt-annotation\n",
        encoding="utf-8",
    )
    settings = load_settings()
    assert settings.cache_path == "yaml.db"
    assert settings.annotation_formatter == "fmt-annotation"


def test_overrides_win_and_none_is_ignored(tmp_path):
    (tmp_path / "custom.yaml").write_text("denylist_path: from-yaml\n", encoding="utf-8")
    settings = load_settings(str(tmp_path / "custom.yaml"), {"denylist_path": "from-cli", "cache_path": None})
    assert settings.denylist_path == "from-cli"
    assert settings.cache_path == DEFAULT_CACHE_PATH


def test_config_path_from_environment(tmp_path, monkeypatch):
    (tmp_path / "elsewhere.yaml").write_text("template_path: msg.txt\n", encoding="utf-8")
    monkeypatch.setenv("PUSHGATE_CONFIG", str(tmp_path / "elsewhere.yaml"))
    assert load_settings().template_path == "msg.txt"


def test_broken_yaml_is_a_warning(tmp_path, caplog):
    (tmp_path / "pushgate.yaml").write_text("pushgate: [unclosed\n", encoding="utf-8")
    with caplog.at_level(logging.WARNING):
        settings = load_settings()
    assert settings.denylist_path == DEFAULT_DENYLIST_PATH
    assert "Failed to load config" in caplog.text


def test_unknown_keys_are_ignored(tmp_path, caplog):
    (tmp_path / "pushgate.yaml").write_text("pushgate:\n  colour: blue\n", encoding="utf-8")
    settings = load_settings()
    assert not hasattr(settings, "colour")
    assert "colour" in caplog.text


def test_invalid_value_raises(tmp_path):
    (tmp_path / "pushgate.yaml").write_text("formatter_timeout: soon\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid pushgate configuration"):
        load_settings()
