"""Purpose: Test configuration loading."""

import json

import pytest

from config import DEFAULT_CONFIG, PASS_TIMINGS, config, set_config
from core.config import BRANDING_DEFAULTS, load_config


def test_load_config_populates_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    cfg_path = tmp_path / "cfg.json"
    cfg_path.write_text('{"redis_url": "redis://cache:6379/1", "branding": {"company_name": "Acme"}}')
    cfg = load_config(str(cfg_path))
    assert cfg["redis_url"] == "redis://cache:6379/1"
    assert cfg["request_ttl_secs"] == DEFAULT_CONFIG["request_ttl_secs"] == 600
    assert cfg["visitor_code_prefix"] == "LOGIC"
    assert cfg["branding"]["company_name"] == "Acme"
    assert cfg["branding"]["print_layout"] == BRANDING_DEFAULTS["print_layout"]


def test_missing_file_uses_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "absent.json"))
    assert cfg["token_ttl_secs"] == 600


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://env:6379/0")
    monkeypatch.setenv("HOST_DECISION_BASE_URL", "https://gate.example.com")
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "465")
    monkeypatch.setenv("FROM_EMAIL", "gate@example.com")
    cfg = load_config(str(tmp_path / "absent.json"))
    assert cfg["redis_url"] == "redis://env:6379/0"
    assert cfg["base_url"] == "https://gate.example.com"
    assert cfg["email"]["smtp_host"] == "smtp.example.com"
    assert cfg["email"]["use_ssl"] is True
    assert cfg["email"]["from_addr"] == "gate@example.com"


@pytest.mark.parametrize("key", ["request_ttl_secs", "token_ttl_secs", "code_retry_limit"])
def test_rejects_non_positive_windows(key):
    with pytest.raises(ValueError):
        load_config("", data={key: 0})


# Test set_config keeps the shared timings in sync
def test_set_config_syncs_timings():
    set_config({"request_ttl_secs": 120, "token_ttl_secs": 90, "render_timeout_secs": 5})
    assert PASS_TIMINGS.request_ttl_secs == 120
    assert PASS_TIMINGS.token_ttl_secs == 90
    assert PASS_TIMINGS.render_timeout_secs == 5.0
    assert config["default_host"] == "Host"
    set_config({})
    assert PASS_TIMINGS.request_ttl_secs == 600


# Test loading layers overrides in memory and never rewrites the file
def test_load_config_leaves_file_untouched(tmp_path, monkeypatch):
    path = tmp_path / "cfg.json"
    original = json.dumps({"default_host": "Lobby"})
    path.write_text(original)
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    cfg = load_config(str(path))
    assert cfg["default_host"] == "Lobby"
    assert cfg["log_level"] == "DEBUG"
    assert path.read_text() == original
