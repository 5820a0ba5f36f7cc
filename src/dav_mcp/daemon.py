"""DavMcpServer, the process supervisor for the stdio MCP server.

Lifecycle states::

    starting -> awaiting-credentials (optional) -> connected -> shutting-down -> terminated

Startup sequence:
1. Initialize OpenTelemetry.
2. Decide the credential mode (already resolved by config).
3. Initialize the remote session when credentials are present. Failure is
   logged and startup continues with an uninitialized session.
4. Open the transport and attach it to the Dispatcher.
5. Log the health snapshot and start the periodic health task.

Shutdown is triggered by SIGINT/SIGTERM, EOF on stdin, an exception from the
serving task, or an unhandled exception reported to the event loop. It runs
once; later triggers share the same result. Releasing the health task, the
transport and the remote client is bounded by ``shutdown_grace_s``.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import signal
import time
from typing import Any

from dav_mcp.config import CredentialMode, ServerConfig
from dav_mcp.core.dispatcher import Dispatcher
from dav_mcp.core.errors import redact_credentials
from dav_mcp.core.telemetry import init_telemetry, shutdown_telemetry
from dav_mcp.core.tool_call_log import ToolCallLogger
from dav_mcp.core.transport import StdioTransport
from dav_mcp.dav.client import DavClient
from dav_mcp.tools import build_registry

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class ServerState(enum.StrEnum):
    STARTING = "starting"
    AWAITING_CREDENTIALS = "awaiting-credentials"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


class DavMcpServer:
    """Owns the remote client, dispatcher and transport for one process lifetime."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        client: DavClient | None = None,
        transport: StdioTransport | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self.config = config
        self.client = client or DavClient(timeout=config.request_timeout_s)
        self.transport = transport or StdioTransport()
        self.registry = build_registry(self.client)
        self.tool_call_logger = ToolCallLogger.from_config(config.tool_call_log)
        self.dispatcher = Dispatcher(
            self.registry,
            self.client.session,
            self.tool_call_logger,
            server_name=config.name,
            server_version=config.version,
            transport_label=self.transport.label,
            development=config.development,
        )
        self.state = ServerState.STARTING
        self._install_signal_handlers = install_signal_handlers
        self._started_at: float | None = None
        self._serve_task: asyncio.Task | None = None
        self._health_task: asyncio.Task | None = None
        self._shutdown_task: asyncio.Task[int] | None = None
        self._shutdown_requested: asyncio.Event | None = None
        self._shutdown_reason: str | None = None
        self._signals: list[signal.Signals] = []

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run the startup sequence up to the ``connected`` state."""
        self._started_at = time.monotonic()
        init_telemetry(self.config.name)
        logger.info(
            "Starting %s v%s (credential mode: %s)",
            self.config.name,
            self.config.version,
            self.config.credential_mode,
        )

        await self._connect_remote()

        await self.transport.open()
        self.state = ServerState.CONNECTED

        snapshot = self.health()
        logger.info(
            "Server ready: %d tools (calendar=%d, contacts=%d, todos=%d) over %s",
            snapshot["tools"]["total"],
            snapshot["tools"]["categories"]["calendar"],
            snapshot["tools"]["categories"]["contacts"],
            snapshot["tools"]["categories"]["todos"],
            snapshot["transport"],
        )
        logger.info("Tool call logging: %s", self.tool_call_logger.describe())

        if self.config.health_interval_s > 0:
            self._health_task = asyncio.create_task(self._health_loop(), name="dav-mcp-health")

    async def _connect_remote(self) -> None:
        """Initialize the remote session. Never aborts startup."""
        mode = self.config.credential_mode
        if mode is CredentialMode.DISABLED:
            logger.info("AUTH_METHOD=Dummy: remote session initialization skipped")
            return

        credentials = self.config.credentials
        if credentials is None:
            # Soft start: tools that need the remote server fail per call.
            logger.warning(
                "No remote credentials configured (missing: %s). Starting anyway; set "
                "CALDAV_SERVER_URL, CALDAV_USERNAME and CALDAV_PASSWORD (or the GOOGLE_* "
                "variables with AUTH_METHOD=OAuth) to enable calendar and contact tools.",
                ", ".join(self.config.missing_credentials) or "unknown",
            )
            return

        self.state = ServerState.AWAITING_CREDENTIALS
        try:
            await self.client.initialize(credentials)
        except Exception as exc:
            logger.error(
                "Remote session initialization failed; continuing without it: %s",
                redact_credentials(str(exc)),
                exc_info=self.config.development,
            )
            return
        logger.info("Remote session initialized (%s)", self.client.session.credential_mode)

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    async def serve(self) -> int:
        """Start, serve until a shutdown trigger, shut down. Returns the exit code."""
        loop = asyncio.get_running_loop()
        self._shutdown_requested = asyncio.Event()
        loop.set_exception_handler(self._handle_loop_exception)
        if self._install_signal_handlers:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self.request_shutdown, f"signal {sig.name}")
                self._signals.append(sig)

        try:
            try:
                await self.start()
            except Exception:
                logger.exception("Startup failed")
                await self.shutdown("startup failure")
                return EXIT_FAILURE

            self._serve_task = asyncio.create_task(
                self.transport.serve(self.dispatcher.handle_message), name="dav-mcp-serve"
            )
            self._serve_task.add_done_callback(self._on_serve_done)

            await self._shutdown_requested.wait()
            return await self.shutdown(self._shutdown_reason or "requested")
        finally:
            for sig in self._signals:
                loop.remove_signal_handler(sig)
            self._signals.clear()

    def request_shutdown(self, reason: str) -> None:
        """Ask the serving loop to shut down. Only the first reason is kept."""
        if self._shutdown_reason is not None:
            logger.debug("Shutdown already requested; ignoring %s", reason)
            return
        self._shutdown_reason = reason
        logger.info("Shutdown requested: %s", reason)
        if self._shutdown_requested is not None:
            self._shutdown_requested.set()

    def _on_serve_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Transport loop failed", exc_info=(type(exc), exc, exc.__traceback__)
            )
            self.request_shutdown(f"transport failure: {type(exc).__name__}")
        else:
            self.request_shutdown("stdin closed")

    def _handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        exc = context.get("exception")
        message = context.get("message", "Unhandled exception in event loop")
        if exc is not None:
            logger.error(message, exc_info=(type(exc), exc, exc.__traceback__))
        else:
            logger.error(message)
        self.request_shutdown("unhandled asynchronous exception")

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.health_interval_s)
            logger.debug("Health check: %s", self.health())

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self, reason: str = "requested") -> int:
        """Release resources once. Concurrent and repeated calls get the same exit code."""
        if self._shutdown_task is None:
            if self._shutdown_reason is None:
                self._shutdown_reason = reason
            self._shutdown_task = asyncio.create_task(self._shutdown(reason))
        return await asyncio.shield(self._shutdown_task)

    async def _shutdown(self, reason: str) -> int:
        self.state = ServerState.SHUTTING_DOWN
        logger.info("Shutting down (%s)", reason)
        try:
            async with asyncio.timeout(self.config.shutdown_grace_s):
                await self._release()
        except TimeoutError:
            logger.error(
                "Shutdown did not complete within %.1fs grace period",
                self.config.shutdown_grace_s,
            )
            exit_code = EXIT_FAILURE
        except Exception:
            logger.exception("Error while releasing resources during shutdown")
            exit_code = EXIT_FAILURE
        else:
            exit_code = EXIT_OK
        self.state = ServerState.TERMINATED
        logger.info("Server terminated (exit code %d)", exit_code)
        return exit_code

    async def _release(self) -> None:
        for task in (self._health_task, self._serve_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        await self.transport.close()
        await self.client.close()
        shutdown_telemetry()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> dict[str, Any]:
        """Snapshot of server identity, state, remote session and tool catalogue."""
        session = self.client.session
        if self.state in (ServerState.SHUTTING_DOWN, ServerState.TERMINATED):
            status = "stopping"
        elif session.initialized or self.config.credential_mode is CredentialMode.DISABLED:
            status = "healthy"
        else:
            status = "degraded"
        uptime = 0.0 if self._started_at is None else time.monotonic() - self._started_at
        return {
            "status": status,
            "server": self.config.name,
            "version": self.config.version,
            "transport": self.transport.label,
            "state": str(self.state),
            "uptime_seconds": round(uptime, 3),
            "remote": {
                **self.client.describe(),
                "credential_mode": str(
                    session.credential_mode
                    if session.initialized
                    else self.config.credential_mode
                ),
            },
            "tools": {
                "total": len(self.registry),
                "categories": self.registry.category_counts(),
            },
        }


async def run_server(config: ServerConfig) -> int:
    """Run a DavMcpServer until shutdown and return its exit code."""
    return await DavMcpServer(config).serve()
