"""HTTP server adapter for scan control.

Provides a small HTTP server using Python's built-in http.server module,
run in a worker thread next to the asyncio scheduler.

Endpoints:
- GET  /health        liveness probe (always public)
- GET  /api/status    scheduler state and last scan summary
- GET  /api/watches   registered subscriptions (in-memory watcher only)
- POST /api/scan      run a scan now; 409 if one is already running

Supports optional API key authentication for /api/* endpoints via the
Authorization header (Bearer token) or X-API-Key.
"""

import asyncio
import hmac
import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Coroutine

from keelpoll.adapters.scheduler.daemon import DaemonScanScheduler
from keelpoll.adapters.watcher.memory import InMemoryWatcher

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 120


def make_scan_handler(
    scheduler: DaemonScanScheduler,
    event_loop: asyncio.AbstractEventLoop,
    api_key: str | None,
    require_auth: bool,
    registry: InMemoryWatcher | None = None,
) -> type[BaseHTTPRequestHandler]:
    """Factory to create a handler class with instance-specific state.

    Args:
        scheduler: Scheduler that owns the scan lock
        event_loop: Event loop the scheduler runs on
        api_key: Optional API key for authentication
        require_auth: Whether authentication is required
        registry: In-memory watcher to expose, if that backend is used

    Returns:
        A ScanHTTPHandler class configured with the provided dependencies
    """

    class ScanHTTPHandler(BaseHTTPRequestHandler):
        """HTTP request handler for scan control endpoints."""

        def _check_auth(self) -> bool:
            """Check if request is authenticated.

            Supports two authentication methods:
            1. Authorization: Bearer <api_key>
            2. X-API-Key: <api_key>
            """
            if not require_auth:
                return True

            if not api_key:
                return False

            auth_header = self.headers.get("Authorization", "")
            if auth_header.startswith("Bearer "):
                return hmac.compare_digest(auth_header[7:], api_key)

            api_key_header = self.headers.get("X-API-Key", "")
            if api_key_header:
                return hmac.compare_digest(api_key_header, api_key)

            return False

        def do_GET(self) -> None:
            """Handle GET requests."""
            if self.path == "/health":
                self._send_json({"status": "healthy"})
                return

            if not self._check_auth():
                self.send_error(401, "Unauthorized: invalid or missing API key")
                return

            if self.path == "/api/status":
                self._send_json(scheduler.status())
            elif self.path == "/api/watches":
                if registry is None:
                    self.send_error(404, "Watch registry not available")
                    return
                self._send_json(
                    {
                        "watches": [
                            {
                                "image": s.image,
                                "schedule": s.schedule,
                                "created_at": s.created_at.isoformat(),
                                "refreshed_at": s.refreshed_at.isoformat(),
                                "refresh_count": s.refresh_count,
                            }
                            for s in registry.subscriptions()
                        ]
                    }
                )
            else:
                self.send_error(404, "Not found")

        def do_POST(self) -> None:
            """Handle POST requests."""
            if not self._check_auth():
                self.send_error(401, "Unauthorized: invalid or missing API key")
                return

            if self.path != "/api/scan":
                self.send_error(404, "Not found")
                return

            try:
                result = self._run_async(scheduler.trigger_scan())
            except Exception as e:
                # Log full exception server-side, return generic error to client
                logger.error(f"Error handling scan request: {e}", exc_info=True)
                self.send_error(500, "Scan failed")
                return

            if result is None:
                self._send_json(
                    {"status": "busy", "message": "scan already in progress"},
                    status=409,
                )
                return
            self._send_json({"status": "success", "result": result.summary()})

        def _run_async(self, coro: Coroutine[Any, Any, Any]) -> Any:
            """Run a coroutine on the scheduler's event loop and wait for it."""
            future = asyncio.run_coroutine_threadsafe(coro, event_loop)
            return future.result(timeout=REQUEST_TIMEOUT_SECONDS)

        def _send_json(self, data: dict[str, Any], status: int = 200) -> None:
            """Send JSON response."""
            body = json.dumps(data, default=str).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: Any) -> None:
            """Log HTTP request."""
            logger.debug(f"HTTP {self.client_address[0]}: {format % args}")

    return ScanHTTPHandler


class ScanHTTPServer:
    """HTTP server adapter exposing scan status and manual scans."""

    def __init__(
        self,
        scheduler: DaemonScanScheduler,
        host: str = "0.0.0.0",
        port: int = 8080,
        api_key: str | None = None,
        require_auth: bool = False,
        registry: InMemoryWatcher | None = None,
    ):
        """Initialize the HTTP server.

        Args:
            scheduler: Scheduler to report on and trigger scans through.
            host: Host to listen on (default 0.0.0.0).
            port: Port to listen on (default 8080; 0 picks a free port).
            api_key: Optional API key for authentication.
            require_auth: Whether to require authentication (default False).
            registry: In-memory watcher whose subscriptions are exposed.

        Raises:
            ValueError: If require_auth is True but no api_key is given.
        """
        if require_auth and not api_key:
            raise ValueError(
                "require_auth=True but no API key provided; "
                "set an API key or disable authentication"
            )

        self.scheduler = scheduler
        self.host = host
        self.port = port
        self.api_key = api_key
        self.require_auth = require_auth
        self.registry = registry
        self.server: ThreadingHTTPServer | None = None
        self._server_task: asyncio.Task[None] | None = None

    @property
    def server_address(self) -> tuple[str, int] | None:
        """Bound (host, port), available once started."""
        if self.server is None:
            return None
        host, port = self.server.server_address[:2]
        return str(host), int(port)

    async def start(self) -> None:
        """Start the HTTP server."""
        auth_note = " (with API key authentication)" if self.require_auth else ""
        logger.info(f"Starting HTTP server on {self.host}:{self.port}{auth_note}")

        handler_class = make_scan_handler(
            scheduler=self.scheduler,
            event_loop=asyncio.get_running_loop(),
            api_key=self.api_key,
            require_auth=self.require_auth,
            registry=self.registry,
        )
        self.server = ThreadingHTTPServer((self.host, self.port), handler_class)
        self._server_task = asyncio.create_task(self._run_server())
        logger.info("HTTP server started")

    async def _run_server(self) -> None:
        """Run the blocking server loop in a thread pool."""
        if not self.server:
            return

        try:
            await asyncio.to_thread(self.server.serve_forever)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"HTTP server error: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self.server:
            # shutdown() blocks until serve_forever returns
            await asyncio.to_thread(self.server.shutdown)
            self.server.server_close()
        if self._server_task:
            self._server_task.cancel()
            try:
                await self._server_task
            except asyncio.CancelledError:
                pass
        logger.info("HTTP server stopped")
