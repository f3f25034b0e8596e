"""
FastAPI Dashboard Server - REST control API + WebSocket push channel.

Read endpoints expose status, trade history and the latest analysis;
control endpoints start/stop the scheduler and trigger manual analysis or
a test trade. ``/ws/live`` registers the socket as an observer of the
engine's event broadcaster.
"""

from __future__ import annotations

import os
import secrets
from typing import List, Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from astroswap import __version__
from astroswap.api.rate_limit import ClientRateLimiter
from astroswap.core.config import ConfigurationMissingError
from astroswap.core.logger import get_logger

logger = get_logger("api_server")

_DEFAULT_ORIGINS = ["http://localhost:8080", "http://127.0.0.1:8080"]


class DashboardServer:
    """
    FastAPI-based control server.

    Endpoints:
    - GET  /api/v1/health - Liveness probe
    - GET  /api/v1/status - Bot status, latest analysis, recent trades
    - GET  /api/v1/trades - Trade history
    - GET  /api/v1/analysis - Latest analysis
    - POST /api/v1/control/start - Arm the scheduler
    - POST /api/v1/control/stop - Disarm the scheduler
    - POST /api/v1/control/force-analysis - Score now, never trades
    - POST /api/v1/control/test-trade - Diagnostic swap
    - WS   /ws/live - Event stream
    """

    def __init__(self, cors_origins: Optional[List[str]] = None):
        self.app = FastAPI(
            title="AstroSwap Control",
            version=__version__,
            docs_url="/api/docs",
        )
        # API keys: separate read vs admin
        self._admin_key = os.getenv("DASHBOARD_ADMIN_KEY", "").strip()
        self._read_key = os.getenv("DASHBOARD_READ_KEY", "").strip()
        self._generated_admin_key = False
        if not self._admin_key:
            self._admin_key = secrets.token_urlsafe(32)
            self._generated_admin_key = True

        self._cors_origins = list(cors_origins or _DEFAULT_ORIGINS)
        self._bot_engine = None
        self._limiter = ClientRateLimiter()
        self._setup_middleware()
        self._setup_routes()

    def set_bot_engine(self, engine) -> None:
        """Inject the bot engine reference."""
        self._bot_engine = engine
        config = getattr(engine, "config", None)
        if config is None:
            return
        if config.app.mode == "live" and self._generated_admin_key:
            raise RuntimeError("DASHBOARD_ADMIN_KEY is required in live mode.")
        if self._generated_admin_key:
            logger.warning(
                "DASHBOARD_ADMIN_KEY not set; generated an ephemeral key. "
                "Set the env var to use control endpoints across restarts.",
            )

    def _dashboard_config(self):
        config = getattr(self._bot_engine, "config", None)
        return getattr(config, "dashboard", None)

    def _require_engine(self):
        if self._bot_engine is None:
            raise HTTPException(status_code=503, detail="Bot engine not ready")
        return self._bot_engine

    def _require_auth_for_reads(self) -> bool:
        dash = self._dashboard_config()
        return bool(getattr(dash, "require_api_key_for_reads", False)) if dash is not None else False

    def _check_read_key(self, api_key: str) -> None:
        if not self._require_auth_for_reads():
            return
        api_key = (api_key or "").strip()
        if not api_key:
            raise HTTPException(status_code=401, detail="Missing credentials")
        if api_key == self._admin_key or (self._read_key and api_key == self._read_key):
            return
        raise HTTPException(status_code=403, detail="Invalid credentials")

    def _check_admin_key(self, api_key: str) -> None:
        api_key = (api_key or "").strip()
        if not api_key or not secrets.compare_digest(api_key, self._admin_key):
            raise HTTPException(status_code=403, detail="Unauthorized")

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    def _setup_middleware(self) -> None:
        """Configure CORS, security headers and rate limiting."""
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self._cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def _security_headers_mw(request: Request, call_next):
            resp = await call_next(request)
            resp.headers.setdefault("X-Content-Type-Options", "nosniff")
            resp.headers.setdefault("X-Frame-Options", "DENY")
            resp.headers.setdefault("Referrer-Policy", "no-referrer")
            if request.url.path.startswith("/api/"):
                resp.headers.setdefault("Cache-Control", "no-store")
            return resp

        @self.app.middleware("http")
        async def _rate_limit_mw(request: Request, call_next):
            dash = self._dashboard_config()
            if (
                request.url.path == "/api/v1/health"
                or dash is None
                or not dash.rate_limit_enabled
            ):
                return await call_next(request)

            client = request.client.host if request.client else "unknown"
            if not self._limiter.allow(
                client, dash.rate_limit_requests_per_minute, dash.rate_limit_burst,
            ):
                logger.info("Rate limited", client=client, path=request.url.path)
                return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})
            return await call_next(request)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def _setup_routes(self) -> None:
        """Register all API routes."""

        # ---- Status Endpoints ----

        @self.app.get("/api/v1/health")
        async def health():
            return {"status": "ok"}

        @self.app.get("/api/v1/status")
        async def get_status(x_api_key: str = Header(default="", alias="X-API-Key")):
            """Bot status with latest analysis and recent trades."""
            self._check_read_key(x_api_key)
            engine = self._bot_engine
            if engine is None:
                return {"status": "initializing"}
            status = engine.build_status()
            latest = engine.latest_analysis
            status.update({
                "status": "running" if status.get("is_running") else "stopped",
                "version": __version__,
                "current_analysis": latest.to_dict() if latest is not None else None,
                "trade_history": engine.recent_trades(engine.config.dashboard.history_limit),
            })
            return status

        @self.app.get("/api/v1/trades")
        async def get_trades(
            limit: int = Query(default=50, ge=1, le=500),
            x_api_key: str = Header(default="", alias="X-API-Key"),
        ):
            self._check_read_key(x_api_key)
            engine = self._require_engine()
            trades = engine.recent_trades(limit)
            return {"trades": trades, "count": len(trades), "total": len(engine.history)}

        @self.app.get("/api/v1/analysis")
        async def get_analysis(x_api_key: str = Header(default="", alias="X-API-Key")):
            self._check_read_key(x_api_key)
            engine = self._require_engine()
            latest = engine.latest_analysis
            return {"analysis": latest.to_dict() if latest is not None else None}

        # ---- Control Endpoints ----

        @self.app.post("/api/v1/control/start")
        async def start_bot(x_api_key: str = Header(default="", alias="X-API-Key")):
            """Arm the scheduler and run one cycle immediately."""
            self._check_admin_key(x_api_key)
            engine = self._require_engine()
            try:
                return await engine.start()
            except ConfigurationMissingError as e:
                logger.error("Start refused", error=str(e))
                return {"success": False, "error": str(e)}

        @self.app.post("/api/v1/control/stop")
        async def stop_bot(x_api_key: str = Header(default="", alias="X-API-Key")):
            self._check_admin_key(x_api_key)
            engine = self._require_engine()
            return await engine.stop()

        @self.app.post("/api/v1/control/force-analysis")
        async def force_analysis(x_api_key: str = Header(default="", alias="X-API-Key")):
            """Score the current instant and publish it. Never trades."""
            self._check_admin_key(x_api_key)
            engine = self._require_engine()
            try:
                analysis = await engine.force_analysis()
            except Exception as e:
                logger.error("Forced analysis failed", error=str(e))
                return {"success": False, "error": str(e)}
            return {"success": True, "analysis": analysis.to_dict()}

        @self.app.post("/api/v1/control/test-trade")
        async def test_trade(x_api_key: str = Header(default="", alias="X-API-Key")):
            """Diagnostic swap. Reserve enforced, trade gate ignored."""
            self._check_admin_key(x_api_key)
            engine = self._require_engine()
            try:
                record = await engine.force_test_trade()
            except Exception as e:
                return {"success": False, "error": str(e)}
            return {
                "success": True,
                "message": "Test trade executed",
                "trade": record.to_dict(),
            }

        # ---- WebSocket ----

        @self.app.websocket("/ws/live")
        async def websocket_endpoint(websocket: WebSocket):
            """Push channel: status snapshot first, then every engine event."""
            api_key = (
                websocket.headers.get("x-api-key")
                or websocket.query_params.get("api_key")
                or ""
            )
            try:
                self._check_read_key(api_key)
            except HTTPException as exc:
                await websocket.accept()
                await websocket.close(code=1008, reason=str(exc.detail) or "Forbidden")
                return

            engine = self._bot_engine
            if engine is None:
                await websocket.accept()
                await websocket.close(code=1013, reason="Bot engine not ready")
                return

            broadcaster = engine.broadcaster
            dash = self._dashboard_config()
            max_connections = int(getattr(dash, "max_ws_connections", 50) or 50)
            if broadcaster.observer_count >= max_connections:
                await websocket.accept()
                await websocket.close(code=1013, reason="Too many connections")
                return

            await websocket.accept()
            if not await broadcaster.register(websocket):
                return
            try:
                # Inbound messages are ignored; reading detects the disconnect.
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                pass
            except Exception as e:
                logger.debug("WebSocket error", error=str(e))
            finally:
                broadcaster.unregister(websocket)


def create_app(engine=None, cors_origins: Optional[List[str]] = None) -> FastAPI:
    """Build a server, attach ``engine`` and return the ASGI app."""
    server = DashboardServer(cors_origins=cors_origins)
    if engine is not None:
        server.set_bot_engine(engine)
    return server.app
