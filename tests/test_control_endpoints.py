"""
Tests for the HTTP control API and the /ws/live push channel.
"""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from astroswap.api.server import DashboardServer, create_app

from tests.conftest import make_config, make_engine

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ADMIN_KEY = "test-admin-key-12345"
READ_KEY = "test-read-key-67890"
ADMIN = {"X-API-Key": ADMIN_KEY}


def _client(monkeypatch, engine=None, **engine_kwargs) -> TestClient:
    monkeypatch.setenv("DASHBOARD_ADMIN_KEY", ADMIN_KEY)
    monkeypatch.setenv("DASHBOARD_READ_KEY", READ_KEY)
    if engine is None:
        engine = make_engine(**engine_kwargs)
    return TestClient(create_app(engine))


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


def test_health_is_open(monkeypatch):
    with _client(monkeypatch) as client:
        resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_status_before_engine_attached(monkeypatch):
    monkeypatch.setenv("DASHBOARD_ADMIN_KEY", ADMIN_KEY)
    with TestClient(create_app()) as client:
        assert client.get("/api/v1/status").json() == {"status": "initializing"}
        assert client.get("/api/v1/trades").status_code == 503


def test_status_payload(monkeypatch):
    with _client(monkeypatch) as client:
        body = client.get("/api/v1/status").json()
    assert body["status"] == "stopped"
    assert body["is_running"] is False
    assert body["can_trade"] is True
    assert body["next_trade_in"] == "now"
    assert body["current_analysis"] is None
    assert body["trade_history"] == []


def test_trades_limit_validation(monkeypatch):
    with _client(monkeypatch) as client:
        assert client.get("/api/v1/trades?limit=0").status_code == 422
        assert client.get("/api/v1/trades?limit=501").status_code == 422
        body = client.get("/api/v1/trades?limit=500").json()
    assert body == {"trades": [], "count": 0, "total": 0}


def test_read_keys_enforced_when_enabled(monkeypatch):
    config = make_config(dashboard={"require_api_key_for_reads": True})
    engine = make_engine(config=config)
    with _client(monkeypatch, engine=engine) as client:
        assert client.get("/api/v1/analysis").status_code == 401
        assert client.get("/api/v1/analysis", headers={"X-API-Key": "wrong"}).status_code == 403
        assert client.get("/api/v1/analysis", headers={"X-API-Key": READ_KEY}).status_code == 200
        assert client.get("/api/v1/analysis", headers=ADMIN).json() == {"analysis": None}


# ---------------------------------------------------------------------------
# Control endpoints
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "path",
    [
        "/api/v1/control/start",
        "/api/v1/control/stop",
        "/api/v1/control/force-analysis",
        "/api/v1/control/test-trade",
    ],
)
def test_control_requires_admin_key(monkeypatch, path):
    with _client(monkeypatch) as client:
        assert client.post(path).status_code == 403
        assert client.post(path, headers={"X-API-Key": READ_KEY}).status_code == 403


def test_start_then_stop(monkeypatch):
    engine = make_engine(score=45)
    asyncio.run(engine.initialize())
    with _client(monkeypatch, engine=engine) as client:
        started = client.post("/api/v1/control/start", headers=ADMIN).json()
        again = client.post("/api/v1/control/start", headers=ADMIN).json()
        status = client.get("/api/v1/status").json()
        stopped = client.post("/api/v1/control/stop", headers=ADMIN).json()
        stopped_again = client.post("/api/v1/control/stop", headers=ADMIN).json()

    assert started["success"] is True
    assert started["first_cycle"] == "weak_buy_wait"
    assert again["success"] is False
    assert status["status"] == "running"
    assert status["current_analysis"]["score"] == 45
    assert stopped["success"] is True
    assert stopped_again["success"] is False


def test_start_without_tokens_reports_error(monkeypatch):
    engine = make_engine()
    engine.token_out = ""
    with _client(monkeypatch, engine=engine) as client:
        body = client.post("/api/v1/control/start", headers=ADMIN).json()
    assert body["success"] is False
    assert "token" in body["error"].lower()


def test_start_before_pair_resolved_reports_error(monkeypatch):
    engine = make_engine(score=65)
    with _client(monkeypatch, engine=engine) as client:
        body = client.post("/api/v1/control/start", headers=ADMIN).json()
    assert body["success"] is False
    assert "unresolved" in body["error"]
    assert not engine.is_running
    assert engine.history == []


def test_force_analysis_returns_analysis_without_trading(monkeypatch):
    engine = make_engine(score=80)
    with _client(monkeypatch, engine=engine) as client:
        body = client.post("/api/v1/control/force-analysis", headers=ADMIN).json()
        latest = client.get("/api/v1/analysis").json()
    assert body["success"] is True
    assert body["analysis"]["score"] == 80
    assert latest["analysis"]["score"] == 80
    assert engine.history == []


def test_test_trade_success(monkeypatch):
    engine = make_engine(balance=10.0)
    with _client(monkeypatch, engine=engine) as client:
        body = client.post("/api/v1/control/test-trade", headers=ADMIN).json()
        trades = client.get("/api/v1/trades").json()
    assert body["success"] is True
    assert body["message"] == "Test trade executed"
    assert body["trade"]["type"] == "test"
    assert body["trade"]["amount_in"] == 0.5
    assert trades["count"] == 1


def test_test_trade_failure_is_structured(monkeypatch):
    with _client(monkeypatch, balance=5.0) as client:
        resp = client.post("/api/v1/control/test-trade", headers=ADMIN)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert "Insufficient balance" in body["error"]


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------


def test_ws_receives_snapshot_then_events(monkeypatch):
    with _client(monkeypatch, score=62) as client:
        with client.websocket_connect("/ws/live") as ws:
            first = ws.receive_json()
            client.post("/api/v1/control/force-analysis", headers=ADMIN)
            second = ws.receive_json()

    assert first["type"] == "status"
    assert set(first["data"]) == {"is_running", "current_analysis", "trade_history"}
    assert second["type"] == "analysis"
    assert second["data"]["score"] == 62


def test_ws_rejects_missing_read_key(monkeypatch):
    config = make_config(dashboard={"require_api_key_for_reads": True})
    engine = make_engine(config=config)
    with _client(monkeypatch, engine=engine) as client:
        with client.websocket_connect("/ws/live") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
    assert exc.value.code == 1008


def test_ws_accepts_read_key_query_param(monkeypatch):
    config = make_config(dashboard={"require_api_key_for_reads": True})
    engine = make_engine(config=config)
    with _client(monkeypatch, engine=engine) as client:
        with client.websocket_connect(f"/ws/live?api_key={READ_KEY}") as ws:
            assert ws.receive_json()["type"] == "status"


def test_ws_connection_cap(monkeypatch):
    config = make_config(dashboard={"max_ws_connections": 1})
    engine = make_engine(config=config)
    with _client(monkeypatch, engine=engine) as client:
        with client.websocket_connect("/ws/live") as first:
            first.receive_json()
            with client.websocket_connect("/ws/live") as second:
                with pytest.raises(WebSocketDisconnect) as exc:
                    second.receive_json()
    assert exc.value.code == 1013


# ---------------------------------------------------------------------------
# Admin key handling
# ---------------------------------------------------------------------------


def test_live_mode_requires_configured_admin_key(monkeypatch):
    monkeypatch.delenv("DASHBOARD_ADMIN_KEY", raising=False)
    server = DashboardServer()
    engine = make_engine(config=make_config(mode="live"))
    with pytest.raises(RuntimeError):
        server.set_bot_engine(engine)


def test_paper_mode_generates_ephemeral_admin_key(monkeypatch):
    monkeypatch.delenv("DASHBOARD_ADMIN_KEY", raising=False)
    server = DashboardServer()
    server.set_bot_engine(make_engine())
    with TestClient(server.app) as client:
        assert client.post("/api/v1/control/stop").status_code == 403
        resp = client.post("/api/v1/control/stop", headers={"X-API-Key": server._admin_key})
    assert resp.json() == {"success": False, "message": "Bot is not running"}


def test_rate_limit(monkeypatch):
    config = make_config(dashboard={
        "rate_limit_enabled": True,
        "rate_limit_requests_per_minute": 1,
        "rate_limit_burst": 2,
    })
    with _client(monkeypatch, engine=make_engine(config=config)) as client:
        codes = [client.get("/api/v1/analysis").status_code for _ in range(3)]
        health = client.get("/api/v1/health").status_code
    assert codes == [200, 200, 429]
    assert health == 200
