"""
Pipeline Service - standalone host

Responsible for:
- Loading and validating the YAML configuration
- Running the pipeline orchestrator until SIGTERM/SIGINT
- Serving a local control API (health, devices, force sync, open/close)
- Keeping the most recent error notifications for operators
"""

import asyncio
import signal
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

from aiohttp import web

from kds_sync import __version__
from kds_sync.common.config import (
    PipelineConfig,
    apply_env_overrides,
    load_pipeline_config,
    read_config_file,
)
from kds_sync.common.exceptions import ConfigError, KdsSyncError
from kds_sync.common.logging_setup import get_service_logger, log_history
from kds_sync.common.timestamp import format_iso
from kds_sync.common.validator import ConfigValidator
from kds_sync.services.publish import render_payload
from .orchestrator import PipelineOrchestrator

logger = get_service_logger("service")

DEFAULT_CONFIG_PATHS = [
    "/etc/kds-sync/config.yaml",
    "/opt/kds-sync/config.yaml",
    "config.yaml",
]

# Error notifications kept for /health
MAX_RECENT_ERRORS = 20


def find_config_path() -> str:
    """Find configuration file"""
    for path in DEFAULT_CONFIG_PATHS:
        if Path(path).exists():
            return path
    return DEFAULT_CONFIG_PATHS[0]


def load_config(config_path: str | None = None) -> PipelineConfig:
    """
    Read, validate and convert the configuration file.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    path = config_path or find_config_path()
    data = apply_env_overrides(read_config_file(path))

    is_valid, errors = ConfigValidator().validate(data)
    if not is_valid:
        raise ConfigError(
            f"{path} is invalid: " + "; ".join(errors),
            recoverable=False,
        )

    return load_pipeline_config(data)


class PipelineService:
    """
    Runs one pipeline behind a small aiohttp control server.

    Routes:
        GET  /health                     pipeline status and recent errors
        GET  /devices                    current snapshot of every device
        POST /sync                       force a full content sync
        POST /devices/{device_id}/open   mark a device open
        POST /devices/{device_id}/close  mark a device closed
        GET  /logs                       recent log entries
    """

    def __init__(
        self,
        config: PipelineConfig,
        orchestrator: PipelineOrchestrator | None = None,
    ):
        self.config = config
        self.orchestrator = orchestrator or PipelineOrchestrator(config)
        self.orchestrator.add_error_listener(self._record_error)

        self._recent_errors: deque[dict] = deque(maxlen=MAX_RECENT_ERRORS)
        self._start_time = datetime.now(timezone.utc)

        # Control server
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

        self._shutdown_event = asyncio.Event()

    async def start(self, unattended: bool = True) -> None:
        """Start the pipeline and the control server."""
        await self.orchestrator.start(unattended=unattended)
        if self.config.control.enabled:
            await self._start_control_server()

    async def stop(self, unattended: bool = True) -> None:
        await self._stop_control_server()
        await self.orchestrator.stop(unattended=unattended)

    async def run(self) -> None:
        """Start, wait for a shutdown signal, stop."""
        try:
            await self.start()
            self._setup_signal_handlers()
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(self._handle_shutdown))

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal"""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    async def _record_error(self, error: KdsSyncError) -> None:
        self._recent_errors.append({
            "timestamp": format_iso(datetime.now(timezone.utc)),
            "type": error.__class__.__name__,
            "message": error.message,
        })

    # ------------------------------------------------------------------
    # Control server
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/devices", self._devices_handler)
        app.router.add_post("/sync", self._sync_handler)
        app.router.add_post("/devices/{device_id}/open", self._open_handler)
        app.router.add_post("/devices/{device_id}/close", self._close_handler)
        app.router.add_get("/logs", self._logs_handler)
        return app

    async def _start_control_server(self) -> None:
        """Start the control HTTP server"""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.control.host, self.config.control.port)
        await site.start()

        logger.info(
            f"Control server started on {self.config.control.host}:{self.config.control.port}"
        )

    async def _stop_control_server(self) -> None:
        """Stop the control HTTP server"""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle health check requests"""
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        status = self.orchestrator.status()

        return web.json_response({
            "status": "healthy" if status["state"] == "running" else "unhealthy",
            "service": "kds-sync",
            "version": __version__,
            "uptime": int(uptime),
            "timestamp": format_iso(datetime.now(timezone.utc)),
            "pipeline": status,
            "recent_errors": list(self._recent_errors),
        })

    async def _devices_handler(self, request: web.Request) -> web.Response:
        snapshots = await self.orchestrator.state_manager.snapshot_all()
        return web.json_response({
            device_id: {"device_id": device_id, **render_payload(snapshot)}
            for device_id, snapshot in snapshots.items()
        })

    async def _sync_handler(self, request: web.Request) -> web.Response:
        """Handle force sync requests"""
        summary = await self.orchestrator.force_content_sync()
        return web.json_response({
            "success": summary.failed == 0,
            **summary.to_dict(),
        })

    async def _open_handler(self, request: web.Request) -> web.Response:
        return await self._set_closed(request, closed=False)

    async def _close_handler(self, request: web.Request) -> web.Response:
        return await self._set_closed(request, closed=True)

    async def _set_closed(self, request: web.Request, closed: bool) -> web.Response:
        device_id = request.match_info["device_id"]
        try:
            changed = await self.orchestrator.set_device_closed(device_id, closed)
        except KeyError:
            return web.json_response(
                {"error": f"Unknown device: {device_id}"},
                status=404,
            )
        return web.json_response({
            "device_id": device_id,
            "status": "closed" if closed else "open",
            "changed": changed,
        })

    async def _logs_handler(self, request: web.Request) -> web.Response:
        try:
            limit = int(request.query.get("limit", "100"))
        except ValueError:
            return web.json_response({"error": "limit must be an integer"}, status=400)
        return web.json_response({"entries": log_history.entries(limit)})


async def main(config_path: str | None = None) -> None:
    """Main entry point"""
    service = PipelineService(load_config(config_path))
    await service.run()


if __name__ == "__main__":
    asyncio.run(main())
