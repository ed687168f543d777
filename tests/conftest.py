"""
Shared fixtures: an isolated state root and a fake `openclaw` CLI.

The fake CLI is a small shell script that appends its arguments to a log
file. Its behaviour is steered with environment variables:
- FAKE_ONBOARD_SLEEP: seconds to sleep during `onboard`
- FAKE_ONBOARD_FAIL: make `onboard` exit with code 3
- FAKE_INSTALL_FAIL: make `gateway install` exit with code 1
- FAKE_START_FAIL: make `gateway start` exit with code 1
- FAKE_START_SLEEP: seconds to sleep during `gateway start`
- FAKE_DAEMON_PIDFILE: make `gateway start` leave a background process
  holding its stdout, and write that process's PID to this file
"""

from __future__ import annotations

import logging
import stat
from pathlib import Path

import pytest

from utils.ports import PortAllocator
from utils.processes import ProcessRunner
from utils.profile_config import ConfigStore
from utils.profile_paths import ProfilePaths
from utils.profiles import ProfileRegistry

FAKE_OPENCLAW = """#!/bin/sh
echo "$*" >> "{log}"
case "$*" in
  *onboard*)
    echo "Preparing workspace"
    if [ -n "$FAKE_ONBOARD_SLEEP" ]; then sleep "$FAKE_ONBOARD_SLEEP"; fi
    if [ -n "$FAKE_ONBOARD_FAIL" ]; then echo "onboard exploded"; exit 3; fi
    echo "Installing daemon"
    echo "Onboarding finished"
    exit 0
    ;;
  *"gateway install"*)
    if [ -n "$FAKE_INSTALL_FAIL" ]; then echo "install failed"; exit 1; fi
    exit 0
    ;;
  *"gateway start"*)
    if [ -n "$FAKE_START_FAIL" ]; then echo "start failed"; exit 1; fi
    if [ -n "$FAKE_START_SLEEP" ]; then sleep "$FAKE_START_SLEEP"; fi
    if [ -n "$FAKE_DAEMON_PIDFILE" ]; then
      echo "started"
      sleep 30 &
      echo $! > "$FAKE_DAEMON_PIDFILE"
    fi
    exit 0
    ;;
esac
exit 0
"""


class FakeOpenClaw:
    def __init__(self, binary: Path, log: Path):
        self.binary = binary
        self.log = log

    def calls(self):
        if not self.log.exists():
            return []
        return [line for line in self.log.read_text().splitlines() if line]


@pytest.fixture
def logger():
    return logging.getLogger("openclaw-manager.tests")


@pytest.fixture
def state_root(tmp_path):
    root = tmp_path / "home"
    root.mkdir()
    return root


@pytest.fixture
def paths(state_root):
    return ProfilePaths(state_root)


@pytest.fixture
def config_store(paths, logger):
    return ConfigStore(paths, logger)


@pytest.fixture
def registry(paths, config_store, logger):
    return ProfileRegistry(paths, config_store, logger, probe_timeout=0.2)


@pytest.fixture
def port_allocator(registry, logger):
    return PortAllocator(registry, base_port=28789, logger=logger)


@pytest.fixture
def fake_openclaw(tmp_path, monkeypatch):
    for name in ("FAKE_ONBOARD_SLEEP", "FAKE_ONBOARD_FAIL", "FAKE_INSTALL_FAIL", "FAKE_START_FAIL",
                 "FAKE_START_SLEEP", "FAKE_DAEMON_PIDFILE"):
        monkeypatch.delenv(name, raising=False)
    log = tmp_path / "openclaw-calls.log"
    binary = tmp_path / "bin" / "openclaw"
    binary.parent.mkdir()
    binary.write_text(FAKE_OPENCLAW.format(log=log))
    binary.chmod(binary.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return FakeOpenClaw(binary, log)


@pytest.fixture
def runner(fake_openclaw, logger):
    return ProcessRunner(binary=str(fake_openclaw.binary), logger=logger, timeout=10)


@pytest.fixture
def make_profile(config_store):
    def make(name, port, model="claude-opus-4-6", channel="telegram"):
        document = {
            "models": {"providers": {"anthropic": {"apiKey": "sk-test", "models": [{"id": model}]}}},
            "agents": {"defaults": {"model": {"primary": f"anthropic/{model}"}}},
            "channels": {channel: {"enabled": True, "botToken": "123456:abc"}},
            "gateway": {"port": port},
        }
        return config_store.write(name, document)

    return make
