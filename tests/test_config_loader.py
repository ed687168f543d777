"""
Tests for the manager settings file and the profile health check.

Run with: pytest tests/test_config_loader.py -v
"""

from __future__ import annotations

import asyncio
import json

import pytest

from healthcheck import verify_profiles
from utils.config_loader import ConfigError, ConfigManager


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("MANAGER_HOST", "MANAGER_PORT", "MANAGER_STATE_ROOT", "OPENCLAW_BIN", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file(tmp_path):
    manager = ConfigManager(tmp_path / "missing.json")
    assert manager.get("host") == "127.0.0.1"
    assert manager.get("base_port") == 28789
    assert manager.get("auth")["max_failures"] == 5
    assert manager.auth_enabled() is False
    assert not (tmp_path / "missing.json").exists()


def test_file_values_and_nested_defaults(tmp_path):
    path = tmp_path / "manager_config.json"
    path.write_text(json.dumps({"host": "0.0.0.0", "auth": {"max_failures": 2}}))
    manager = ConfigManager(path)
    assert manager.get("auth")["max_failures"] == 2
    assert manager.get("auth")["window_seconds"] == 300
    # auto mode turns auth on off loopback
    assert manager.auth_enabled() is True


def test_explicit_auth_setting_wins(tmp_path):
    path = tmp_path / "manager_config.json"
    path.write_text(json.dumps({"host": "0.0.0.0", "auth": {"enabled": False}}))
    assert ConfigManager(path).auth_enabled() is False


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("MANAGER_PORT", "8123")
    monkeypatch.setenv("OPENCLAW_BIN", "/opt/openclaw")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    manager = ConfigManager(tmp_path / "missing.json")
    assert manager.get("port") == 8123
    assert manager.get("openclaw_bin") == "/opt/openclaw"
    assert manager.get("log")["level"] == "DEBUG"


def test_invalid_values_are_rejected(tmp_path, monkeypatch):
    path = tmp_path / "manager_config.json"
    path.write_text(json.dumps({"base_port": 0}))
    with pytest.raises(ConfigError, match="base_port"):
        ConfigManager(path)

    path.write_text("{oops")
    with pytest.raises(ConfigError):
        ConfigManager(path)

    monkeypatch.setenv("MANAGER_PORT", "eighty")
    with pytest.raises(ConfigError):
        ConfigManager(tmp_path / "missing.json")


@pytest.mark.asyncio
async def test_healthcheck_reports_down_gateways(registry, make_profile):
    server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        make_profile("default", port)
        make_profile("work", 1)
        healthy, errors = await asyncio.to_thread(verify_profiles, registry, timeout=0.5)
    finally:
        server.close()
        await server.wait_closed()

    assert healthy == ["default"]
    assert len(errors) == 1
    assert "work" in errors[0]
