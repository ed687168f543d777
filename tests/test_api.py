"""
End-to-end tests for the HTTP control plane using FastAPI's TestClient.

Tests verify that:
- Setup and connect run through prepare + SSE stream with one-time tickets
- Gateway and profile routes map errors to {"error"} with the right status
- Session auth gates every route except the page, health and /auth/*
- Login failures are rate limited with a Retry-After header

Run with: pytest tests/test_api.py -v
"""

from __future__ import annotations

import json

import pytest
from starlette.testclient import TestClient

from api.api_service import create_app
from api.routers.root import safe_json
from utils.auth import LoginRateLimiter, SessionAuth
from utils.dependencies import initialize_dependencies

TOKEN = "test-access-token-0123456789abcdefghijkl"


def make_settings(**overrides):
    settings = {
        "provider_base_url": "https://provider.test",
        "ticket_ttl": 60,
        "ticket_sweep_interval": 60,
        "index_html": None,
        "auth": {"cookie_name": "openclaw_manager_session", "cookie_max_age": 3600},
    }
    settings.update(overrides)
    return settings


@pytest.fixture
def build_client(registry, config_store, port_allocator, runner, logger):
    def build(auth_enabled=False, **settings):
        session_auth = SessionAuth(TOKEN, LoginRateLimiter(max_failures=3), enabled=auth_enabled)
        initialize_dependencies(
            registry=registry,
            config_store=config_store,
            port_allocator=port_allocator,
            runner=runner,
            session_auth=session_auth,
            settings=make_settings(**settings),
            logger=logger,
        )
        return TestClient(create_app())

    return build


@pytest.fixture
def client(build_client):
    with build_client() as test_client:
        yield test_client


@pytest.fixture
def auth_client(build_client):
    with build_client(auth_enabled=True) as test_client:
        yield test_client


def sse_events(response):
    events = []
    for block in response.text.split("\n\n"):
        for line in block.splitlines():
            if line.startswith("data: "):
                events.append(json.loads(line[len("data: "):]))
    return events


SETUP_BODY = {
    "profile": "work",
    "apiKey": "sk-test-key",
    "model": "claude-sonnet-4-5-20250929",
    "channel": "telegram",
    "botToken": "123456:telegram-token",
}


def run_setup(client, body=SETUP_BODY):
    prepared = client.post("/setup/prepare", json=body)
    assert prepared.status_code == 200
    ticket = prepared.json()["ticket"]
    response = client.get("/setup-stream", params={"ticket": ticket})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    return ticket, sse_events(response)


def test_health_and_models(client):
    assert client.get("/health").json() == {"status": "ok"}
    models = client.get("/models").json()
    assert models["default"] == "claude-opus-4-6"
    assert [m["id"] for m in models["models"]][1] == "claude-sonnet-4-5-20250929"


def test_setup_stream_end_to_end(client, paths):
    ticket, events = run_setup(client)

    final = events[-1]
    assert final["done"] is True
    assert final["percent"] == 100
    assert final["port"] == 28789
    assert final["configPath"] == str(paths.config_path("work"))
    assert all(e["percent"] < 100 for e in events[:-1])

    # the ticket is gone after one stream
    again = client.get("/setup-stream", params={"ticket": ticket})
    assert again.status_code == 400
    assert "error" in again.json()

    profiles = client.get("/profiles").json()
    assert profiles == [
        {
            "name": "work",
            "port": 28789,
            "status": "stopped",
            "model": "Claude Sonnet 4.5",
            "modelId": "claude-sonnet-4-5-20250929",
            "channel": "telegram",
            "configPath": str(paths.config_path("work")),
        }
    ]
    assert client.get("/profiles/work").json()["port"] == 28789
    assert client.get("/profiles/ghost").status_code == 404


def test_setup_failure_is_reported_as_error_event(client, monkeypatch):
    monkeypatch.setenv("FAKE_ONBOARD_FAIL", "1")
    _, events = run_setup(client)
    assert events[-1]["error"] is True
    assert events[-1]["percent"] == -1
    assert "Onboarding failed" in events[-1]["message"]
    assert not any(e.get("done") for e in events)


@pytest.mark.parametrize(
    "override,fragment",
    [
        ({"apiKey": ""}, "API Key"),
        ({"profile": "no spaces"}, "Invalid profile name"),
        ({"model": "gpt-4"}, "Unknown model"),
        ({"botToken": ""}, "botToken"),
    ],
)
def test_prepare_rejects_invalid_setup(client, override, fragment):
    response = client.post("/setup/prepare", json={**SETUP_BODY, **override})
    assert response.status_code == 400
    assert fragment in response.json()["error"]


def test_stream_without_valid_ticket(client):
    assert client.get("/setup-stream", params={"ticket": "nope"}).status_code == 400
    assert client.get("/connect-stream").status_code == 400


def test_setup_ticket_cannot_open_connect_stream(client):
    ticket = client.post("/setup/prepare", json=SETUP_BODY).json()["ticket"]
    assert client.get("/connect-stream", params={"ticket": ticket}).status_code == 400
    assert client.get("/setup-stream", params={"ticket": ticket}).status_code == 400


def test_connect_stream_updates_allowlist(client, config_store):
    run_setup(client)
    prepared = client.post("/connect/prepare", json={"profile": "work", "telegramId": "555"})
    ticket = prepared.json()["ticket"]
    events = sse_events(client.get("/connect-stream", params={"ticket": ticket}))

    assert events[-1]["done"] is True
    assert events[-1]["message"] == "Connected"
    telegram = config_store.read("work")["channels"]["telegram"]
    assert telegram["allowFrom"] == ["555"]
    assert telegram["dmPolicy"] == "allowlist"


def test_connect_to_missing_profile_is_an_error_event(client):
    ticket = client.post("/connect/prepare", json={"profile": "ghost", "telegramId": "1"}).json()["ticket"]
    events = sse_events(client.get("/connect-stream", params={"ticket": ticket}))
    assert events[-1]["error"] is True
    assert "Please run setup first" in events[-1]["message"]


def test_connect_prepare_requires_numeric_id(client):
    response = client.post("/connect/prepare", json={"profile": "work", "telegramId": "abc"})
    assert response.status_code == 400


def test_gateway_routes(client, make_profile, fake_openclaw, monkeypatch):
    make_profile("work", 28790)
    assert client.post("/start-gateway", json={"profile": "work"}).json() == {"success": True}
    assert client.post("/stop-gateway", json={"profile": "work"}).json() == {"success": True}
    assert client.post("/restart-gateway", json={"profile": "work"}).json() == {"success": True}

    missing = client.post("/start-gateway", json={"profile": "ghost"})
    assert missing.status_code == 404
    assert missing.json() == {"error": "Profile 'ghost' not found"}

    monkeypatch.setenv("FAKE_START_FAIL", "1")
    failed = client.post("/start-gateway", json={"profile": "work"})
    assert failed.status_code == 500
    assert "error" in failed.json()


def test_change_model_and_delete(client, make_profile, config_store, registry):
    make_profile("work", 28790)
    response = client.post("/change-model", json={"profile": "work", "modelId": "claude-haiku-4-5-20251001"})
    assert response.status_code == 200
    assert response.json()["success"] is True
    primary = config_store.read("work")["agents"]["defaults"]["model"]["primary"]
    assert primary == "anthropic/claude-haiku-4-5-20251001"

    assert client.post("/change-model", json={"profile": "work", "modelId": "nope"}).status_code == 400

    assert client.post("/delete-profile", json={"profile": "work"}).json() == {"success": True}
    assert registry.list_names() == []
    assert client.post("/delete-profile", json={"profile": "work"}).status_code == 404


def test_index_without_page_returns_state(client, make_profile):
    make_profile("default", 28789)
    state = client.get("/").json()
    assert state["auth"] == {"enabled": False, "authenticated": True}
    assert [p["name"] for p in state["profiles"]] == ["default"]


def test_index_injects_state_into_page(build_client, tmp_path):
    page = tmp_path / "index.html"
    page.write_text("<html><head><!--SERVER_STATE--></head><body></body></html>")
    with build_client(index_html=str(page)) as test_client:
        html = test_client.get("/").text
    assert "<script>window.__STATE__=" in html
    assert "<!--SERVER_STATE-->" not in html


def test_safe_json_escapes_script_tags():
    encoded = safe_json({"name": "</script><script>alert(1)</script>"})
    assert "<" not in encoded
    assert json.loads(encoded)["name"] == "</script><script>alert(1)</script>"


def test_auth_gates_routes(auth_client):
    assert auth_client.get("/profiles").status_code == 401
    assert auth_client.post("/setup/prepare", json=SETUP_BODY).status_code == 401
    assert auth_client.post("/shutdown").status_code == 401
    assert auth_client.get("/health").status_code == 200
    assert auth_client.get("/").json()["profiles"] == []
    assert auth_client.get("/auth/status").json() == {"enabled": True, "authenticated": False}

    assert auth_client.post("/auth/login", json={"token": "wrong"}).status_code == 401
    login = auth_client.post("/auth/login", json={"token": TOKEN})
    assert login.status_code == 200
    cookie = login.headers["set-cookie"].lower()
    assert "httponly" in cookie
    assert "samesite=strict" in cookie

    assert auth_client.get("/profiles").status_code == 200
    assert auth_client.get("/auth/status").json()["authenticated"] is True

    auth_client.post("/auth/logout")
    assert auth_client.get("/profiles").status_code == 401


def test_bearer_token_is_accepted(auth_client):
    headers = {"Authorization": f"Bearer {TOKEN}"}
    assert auth_client.get("/profiles", headers=headers).status_code == 200
    bad = {"Authorization": "Bearer nope"}
    assert auth_client.get("/profiles", headers=bad).status_code == 401


def test_login_rate_limit(auth_client):
    for _ in range(3):
        assert auth_client.post("/auth/login", json={"token": "wrong"}).status_code == 401
    limited = auth_client.post("/auth/login", json={"token": TOKEN})
    assert limited.status_code == 429
    assert int(limited.headers["retry-after"]) > 0
    assert auth_client.get("/profiles").status_code == 401


def test_shutdown_without_server(client):
    assert client.post("/shutdown").json() == {"ok": True}
