from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from reminder_server.config import DEFAULTS, load_config


def test_missing_file_falls_back_to_defaults(tmp_path: Path, clean_env):
    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg == DEFAULTS
    # Defaults are copied, not shared.
    cfg["storage"]["data_dir"] = "elsewhere"
    assert DEFAULTS["storage"]["data_dir"] == "data"


def test_file_values_merge_over_defaults(tmp_path: Path, clean_env):
    path = tmp_path / "cfg.yaml"
    path.write_text(yaml.safe_dump({"completion": {"model": "gpt-4o-mini"}}), encoding="utf-8")

    cfg = load_config(str(path))
    assert cfg["completion"]["model"] == "gpt-4o-mini"
    assert cfg["completion"]["base_url"] == "https://api.openai.com/v1"
    assert cfg["agent"]["default_delay"] == 60


def test_env_var_selects_config_file(tmp_path: Path, clean_env, monkeypatch):
    path = tmp_path / "cfg.yaml"
    path.write_text("storage:\n  data_dir: /srv/reminders\n", encoding="utf-8")
    monkeypatch.setenv("REMINDER_SERVER_CONFIG", str(path))
    assert load_config()["storage"]["data_dir"] == "/srv/reminders"


def test_env_overrides_are_typed(tmp_path: Path, clean_env, monkeypatch):
    monkeypatch.setenv("REMINDER_SERVER__SCHEDULER__POLL_INTERVAL", "0.5")
    monkeypatch.setenv("REMINDER_SERVER__SCHEDULER__AUTOSTART", "false")
    monkeypatch.setenv("REMINDER_SERVER__AGENT__DEFAULT_DELAY", "30")
    monkeypatch.setenv("REMINDER_SERVER__COMPLETION__MODEL", "local-model")

    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg["scheduler"] == {"poll_interval": 0.5, "autostart": False}
    assert cfg["agent"]["default_delay"] == 30
    assert cfg["completion"]["model"] == "local-model"


def test_malformed_yaml_raises(tmp_path: Path, clean_env):
    path = tmp_path / "bad.yaml"
    path.write_text("storage: [unclosed\n", encoding="utf-8")
    with pytest.raises(RuntimeError):
        load_config(str(path))


def test_non_mapping_yaml_raises(tmp_path: Path, clean_env):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(RuntimeError):
        load_config(str(path))


def test_shipped_default_config_loads(project_root: Path, clean_env):
    cfg = load_config(str(project_root / "config" / "default.yaml"))
    assert cfg["completion"]["model"] == "gpt-4o"
    assert cfg["completion"]["timeout"] is None
