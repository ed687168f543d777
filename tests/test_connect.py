"""
Tests for adding Telegram users to a profile's allowlist.

Run with: pytest tests/test_connect.py -v
"""

from __future__ import annotations

import pytest

from utils.connect import ConnectRequest, add_to_allowlist, connect_user
from utils.errors import ConfigNotFoundError, ValidationError


def test_add_to_allowlist_dedupes_and_stringifies():
    doc = {"channels": {"telegram": {"enabled": True, "dmPolicy": "pairing", "allowFrom": [42]}}}
    add_to_allowlist(doc, "telegram", "42")
    add_to_allowlist(doc, "telegram", "7")
    assert doc["channels"]["telegram"] == {
        "enabled": True,
        "dmPolicy": "allowlist",
        "allowFrom": ["42", "7"],
    }


def test_request_validation():
    ConnectRequest(profile="work", telegramId=12345).validate_fields()
    with pytest.raises(ValidationError):
        ConnectRequest(profile="work").validate_fields()
    with pytest.raises(ValidationError):
        ConnectRequest(profile="work", telegramId="@someone").validate_fields()
    ConnectRequest(profile="work", channel="feishu").validate_fields()


@pytest.mark.asyncio
async def test_connect_updates_allowlist_and_restarts(config_store, runner, logger, make_profile, fake_openclaw):
    make_profile("work", 28790)
    events = []
    result = await connect_user(
        ConnectRequest(profile="work", telegramId="987654"),
        config_store,
        runner,
        logger,
        on_progress=lambda percent, message: events.append(percent),
    )

    assert result == {"profile": "work", "channel": "telegram", "restarted": True}
    telegram = config_store.read("work")["channels"]["telegram"]
    assert telegram["dmPolicy"] == "allowlist"
    assert telegram["allowFrom"] == ["987654"]
    assert telegram["botToken"] == "123456:abc"
    assert fake_openclaw.calls() == ["--profile work gateway restart"]
    assert events == sorted(events)


@pytest.mark.asyncio
async def test_connect_requires_existing_config(config_store, runner, logger):
    with pytest.raises(ConfigNotFoundError):
        await connect_user(ConnectRequest(profile="ghost", telegramId="1"), config_store, runner, logger)


@pytest.mark.asyncio
async def test_connect_other_channels_finish_immediately(config_store, runner, logger, fake_openclaw):
    result = await connect_user(ConnectRequest(profile="work", channel="feishu"), config_store, runner, logger)
    assert result["restarted"] is False
    assert fake_openclaw.calls() == []
