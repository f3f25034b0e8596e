#!/usr/bin/env python3
"""
AstroSwap - Main Entry Point

main.py owns init/run/shutdown: preflight, logging, pair verification,
optional boot test trade, control server, scheduler, signal handling.
"""

from __future__ import annotations

import asyncio
import os
import signal as sig
import sys
from pathlib import Path

_INSTANCE_LOCK_FD: int | None = None


def _acquire_instance_lock() -> bool:
    """
    Best-effort single-instance lock so two bots never trade the same wallet
    from one host.
    """
    try:
        import fcntl  # type: ignore
    except ImportError:
        return True

    lock_path = os.getenv("INSTANCE_LOCK_PATH", "logs/astroswap.lock").strip() or "logs/astroswap.lock"
    lock_file = Path(lock_path)
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        existing = ""
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            existing = os.read(fd, 64).decode("utf-8", "ignore").strip()
        except OSError:
            pass
        msg = f"[FATAL] Another bot instance is already running (lock: {lock_file})."
        if existing:
            msg += f" (pid: {existing})"
        print(msg)
        os.close(fd)
        return False

    os.ftruncate(fd, 0)
    os.write(fd, f"{os.getpid()}\n".encode("utf-8"))
    global _INSTANCE_LOCK_FD
    _INSTANCE_LOCK_FD = fd
    return True


def preflight_checks() -> bool:
    """Run pre-flight system checks before startup."""
    for directory in ["logs", "config"]:
        Path(directory).mkdir(parents=True, exist_ok=True)

    if not Path("config/config.yaml").exists():
        print("[WARN] config/config.yaml not found, using defaults")
    if not Path(".env").exists():
        print("[WARN] No .env file; relying on process environment")

    return _acquire_instance_lock()


def _install_asyncio_exception_handler(loop: asyncio.AbstractEventLoop, logger) -> None:
    def _handler(_loop, context):
        exc = context.get("exception")
        logger.error(
            "Unhandled asyncio exception",
            message=context.get("message", ""),
            error=repr(exc) if exc else None,
        )

    loop.set_exception_handler(_handler)


def build_backend(config):
    """Paper backend in paper mode, gateway client in live mode."""
    from astroswap.exchange.gswap_client import GSwapGatewayClient
    from astroswap.exchange.paper import PaperSwapBackend

    if config.app.mode == "live":
        return GSwapGatewayClient(
            base_url=config.exchange.gateway_url,
            api_key=config.exchange.gateway_api_key,
            timeout_seconds=config.exchange.timeout,
            max_retries=config.exchange.max_retries,
            retry_base_delay=config.exchange.retry_base_delay,
        )
    return PaperSwapBackend(
        token_in=config.trading.token_in,
        token_out=config.trading.token_out,
        price=config.exchange.paper_price,
        balances={config.trading.token_in: config.exchange.paper_balance},
        fee_tier=config.exchange.paper_fee_tier,
    )


async def run_bot() -> int:
    """Initialize and run the engine with the control server. Returns an exit code."""
    import uvicorn
    from astroswap.api.server import DashboardServer
    from astroswap.core.config import get_config
    from astroswap.core.engine import BotEngine, PairVerificationError
    from astroswap.core.logger import get_logger

    logger = get_logger("main")
    config = get_config()
    engine = BotEngine(build_backend(config), config=config)

    # Phase 1: verify the pair; nothing runs without it
    try:
        await engine.initialize()
    except PairVerificationError as e:
        logger.critical("Token pair verification failed", error=str(e))
        await engine.shutdown()
        return 1

    # Phase 2: optional boot diagnostic
    if config.trading.immediate_test_on_start:
        try:
            await engine.execute_immediate_test()
        except Exception as e:
            if not config.trading.continue_on_test_failure:
                logger.critical("Immediate test trade failed, aborting", error=str(e))
                await engine.shutdown()
                return 1
            logger.warning("Immediate test trade failed, continuing", error=str(e))

    # Phase 3: control server (signal handlers stay with us)
    dashboard = DashboardServer(cors_origins=config.dashboard.cors_origins)
    dashboard.set_bot_engine(engine)
    uvi_config = uvicorn.Config(
        app=dashboard.app,
        host=config.dashboard.host,
        port=config.dashboard.port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(uvi_config)
    server.install_signal_handlers = lambda: None

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    _install_asyncio_exception_handler(loop, logger)
    for s in (sig.SIGINT, sig.SIGTERM):
        try:
            loop.add_signal_handler(s, shutdown_event.set)
        except NotImplementedError:
            sig.signal(s, lambda *_: loop.call_soon_threadsafe(shutdown_event.set))

    server_task = asyncio.create_task(server.serve(), name="dashboard_server")

    # Phase 4: optional autostart
    if config.trading.autostart:
        await engine.start()
    else:
        logger.info("Autostart disabled; use POST /api/v1/control/start")

    # Phase 5: wait for a signal
    await shutdown_event.wait()
    logger.info("Shutdown signal received, cleaning up...")
    await engine.shutdown()
    server.should_exit = True
    try:
        await asyncio.wait_for(server_task, timeout=5)
    except asyncio.TimeoutError:
        logger.warning("Dashboard server did not stop in time")
    return 0


def main():
    """Main entry point."""
    from astroswap import __version__
    from astroswap.core.config import ConfigManager
    from astroswap.core.logger import get_logger, setup_logging

    if not preflight_checks():
        sys.exit(1)

    config = ConfigManager().config
    setup_logging(
        log_level=config.app.log_level,
        log_dir=config.app.log_dir,
        json_output=config.app.json_logs,
    )
    logger = get_logger("main")
    logger.info(
        "Starting AstroSwap",
        version=__version__,
        python=sys.version.split()[0],
        mode=config.app.mode,
        token_in=config.trading.token_in,
        token_out=config.trading.token_out,
    )

    try:
        code = asyncio.run(run_bot())
    except KeyboardInterrupt:
        logger.info("Shutdown requested via keyboard interrupt")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
