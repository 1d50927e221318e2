import json

import pytest

from wabridge.config.loader import ConfigError, load_config, load_skill, save_config
from wabridge.config.schema import Config


def _write(path, data):
    path.write_text(json.dumps(data))
    return path


def test_load_config_requires_phone(tmp_path):
    path = _write(tmp_path / "config.json", {"cwd": "/tmp"})

    with pytest.raises(ConfigError, match="phone is required"):
        load_config(path)

    cfg = load_config(path, require_phone=False)
    assert cfg.cwd == "/tmp"


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.json")


def test_load_config_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError):
        load_config(path)


def test_env_overrides_apply_after_file(tmp_path, monkeypatch):
    path = _write(tmp_path / "config.json", {"phone": "111", "timeout": 1000})
    monkeypatch.setenv("WABRIDGE_PHONE", "+222")
    monkeypatch.setenv("WABRIDGE_TIMEOUT", "5000")
    monkeypatch.setenv("WABRIDGE_BRIDGE_URL", "ws://sidecar:1")

    cfg = load_config(path)

    assert cfg.phone == "222"
    assert cfg.timeout == 5000
    assert cfg.transport.bridge_url == "ws://sidecar:1"


def test_save_config_writes_camel_case(tmp_path):
    path = save_config(Config(phone="123", max_turns=3), tmp_path / "config.json")
    data = json.loads(path.read_text())
    assert data["phone"] == "123"
    assert data["maxTurns"] == 3
    assert "allowedTools" in data
    assert "bridgeUrl" in data["transport"]


def test_load_skill_relative_to_config(tmp_path):
    (tmp_path / "skills").mkdir()
    (tmp_path / "skills" / "wa.md").write_text("Be brief.")
    config_path = tmp_path / "config.json"

    cfg = Config(phone="1", skill="skills/wa.md")
    assert load_skill(cfg, config_path) == "Be brief."

    assert load_skill(Config(phone="1", skill="missing.md"), config_path) is None
    assert load_skill(Config(phone="1"), config_path) is None
