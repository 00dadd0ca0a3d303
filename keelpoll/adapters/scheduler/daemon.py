"""Daemon scheduler adapter.

Implements a long-running asyncio loop that runs a scan immediately and
then once per fixed interval until a stop signal is observed.
"""

import asyncio
import logging
import math
import signal
from datetime import datetime, timezone
from typing import Any, cast

from keelpoll.core.models import ScanResult
from keelpoll.core.ports import ScanPort

logger = logging.getLogger(__name__)

# Consecutive failed scans before escalating to a critical log
FAILURE_ALERT_THRESHOLD = 5


class DaemonScanScheduler:
    """Asyncio-based daemon scheduler for periodic scans.

    Ticks are anchored to the moment the loop started, so the interval is
    wall-clock fixed rather than measured from the end of each scan.
    Ticks that elapse while a scan is still running are skipped, never
    queued, so scans always run strictly one after another.
    """

    def __init__(
        self,
        scan_port: ScanPort | None = None,
        scan_interval_seconds: float = 55,
        scan_timeout_seconds: float | None = None,
    ):
        """Initialize daemon scheduler.

        Args:
            scan_port: ScanPort implementation to call for scans (can be set later).
            scan_interval_seconds: Interval between scan ticks in seconds.
            scan_timeout_seconds: Upper bound for a single scan (None = unbounded).
        """
        if scan_interval_seconds <= 0:
            raise ValueError("scan_interval_seconds must be positive")

        self.scan_port = scan_port
        self.scan_interval_seconds = scan_interval_seconds
        self.scan_timeout_seconds = scan_timeout_seconds
        self.running = False
        self.scan_count = 0
        self.consecutive_failures = 0
        self.last_result: ScanResult | None = None
        self.last_error: str | None = None
        self.last_scan_at: datetime | None = None
        self._stop_event: asyncio.Event | None = None
        # Guards against a manual scan overlapping a periodic one
        self._scan_lock = asyncio.Lock()

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    async def start(
        self,
        stop_event: asyncio.Event | None = None,
        fail_on_initial_error: bool = False,
    ) -> None:
        """Start the daemon scheduler loop and block until stopped.

        Args:
            stop_event: Root cancellation signal. When set, the loop stops
                waiting immediately and returns. A private event is created
                if none is given; stop() sets it.
            fail_on_initial_error: Re-raise if the initial scan fails
                instead of logging it and carrying on.

        Raises:
            ValueError: If scan_port is not set.
            Exception: The initial scan's error, only when
                fail_on_initial_error is True.
        """
        if self.scan_port is None:
            raise ValueError("scan_port must be set before starting the scheduler")

        if self.running:
            logger.warning("Daemon scheduler already running")
            return

        self._stop_event = stop_event if stop_event is not None else asyncio.Event()
        self.running = True
        logger.info(
            f"Starting daemon scheduler with {self.scan_interval_seconds}s interval"
        )

        # Set up signal handlers for graceful shutdown
        self._setup_signal_handlers()

        try:
            await self._run_loop(fail_on_initial_error)
        except asyncio.CancelledError:
            logger.info("Daemon scheduler cancelled")
        finally:
            self.running = False
            self._remove_signal_handlers()
            logger.info("Daemon scheduler stopped")

    async def stop(self) -> None:
        """Signal the daemon scheduler loop to stop."""
        if not self.running:
            return

        logger.info("Stopping daemon scheduler...")
        if self._stop_event is not None:
            self._stop_event.set()

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        try:
            loop = asyncio.get_running_loop()

            def _handle_signal(sig: int) -> None:
                logger.info(f"Received signal {sig}, initiating graceful shutdown...")
                if self._stop_event is not None:
                    self._stop_event.set()

            loop.add_signal_handler(signal.SIGTERM, _handle_signal, signal.SIGTERM)
            loop.add_signal_handler(signal.SIGINT, _handle_signal, signal.SIGINT)
        except NotImplementedError:
            # Signal handlers not available on Windows
            logger.debug("Signal handlers not available on this platform")
        except (RuntimeError, ValueError) as e:
            # Not on the main thread (e.g. under a test runner thread)
            logger.warning(f"Failed to set up signal handlers: {e}")

    def _remove_signal_handlers(self) -> None:
        """Restore default signal handling once the loop has stopped."""
        try:
            loop = asyncio.get_running_loop()
            loop.remove_signal_handler(signal.SIGTERM)
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError, ValueError):
            pass

    def _stopped(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to timeout seconds. Returns True if stop was signalled."""
        stop_event = cast(asyncio.Event, self._stop_event)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=max(timeout, 0.0))
        except asyncio.TimeoutError:
            return False
        return True

    async def _run_loop(self, fail_on_initial_error: bool = False) -> None:
        """Main daemon loop."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        interval = self.scan_interval_seconds

        # Initial scan runs unconditionally
        await self._run_cycle("#1", raise_errors=fail_on_initial_error)

        tick = 1
        while not self._stopped():
            elapsed = loop.time() - started
            due = math.floor(elapsed / interval) + 1
            if due > tick:
                logger.warning(
                    f"Scan overran the {interval}s interval, skipping {due - tick} tick(s)"
                )
                tick = due

            deadline = started + tick * interval
            if await self._wait_for_stop(deadline - loop.time()):
                break

            tick += 1
            await self._run_cycle(f"#{tick}")

    async def _run_cycle(
        self, label: str, raise_errors: bool = False
    ) -> ScanResult | None:
        """Run one scan, logging rather than raising unless asked to."""
        try:
            logger.debug(f"Performing scan {label}")
            return await self._scan(label)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.consecutive_failures += 1
            self.last_error = str(e) or type(e).__name__
            logger.error(
                f"Scan {label} failed: {e} "
                f"(consecutive failures: {self.consecutive_failures})",
                exc_info=True,
            )
            if self.consecutive_failures >= FAILURE_ALERT_THRESHOLD:
                logger.critical(
                    f"Scan has failed {self.consecutive_failures} consecutive times. "
                    f"This may indicate a persistent issue with cluster access."
                )
            if raise_errors:
                raise
            return None

    async def _scan(self, label: str) -> ScanResult:
        """Execute a scan under the scan lock, bounded by the scan timeout."""
        scan_port = cast(ScanPort, self.scan_port)
        loop = asyncio.get_running_loop()

        async with self._scan_lock:
            start_time = loop.time()
            scan = scan_port.execute_scan(self._stop_event)
            if self.scan_timeout_seconds is not None:
                result = await asyncio.wait_for(scan, timeout=self.scan_timeout_seconds)
            else:
                result = await scan
            elapsed = loop.time() - start_time

        self.scan_count += 1
        self.consecutive_failures = 0
        self.last_error = None
        self.last_result = result
        self.last_scan_at = datetime.now(timezone.utc)

        logger.info(
            f"Scan {label} completed in {elapsed:.2f}s: "
            f"{result.deployments_seen} deployments, "
            f"{len(result.checks)} poll-triggered, "
            f"{result.watches_dispatched} watches dispatched, "
            f"{result.deployments_failed} failed"
        )
        return result

    async def trigger_scan(self) -> ScanResult | None:
        """Run a scan on demand.

        Returns:
            The scan result, or None if a scan is already in progress.

        Raises:
            ValueError: If scan_port is not set.
            Exception: If the scan itself fails.
        """
        if self.scan_port is None:
            raise ValueError("scan_port must be set to run a scan")

        if self.is_scanning:
            logger.info("Scan already in progress, ignoring manual scan request")
            return None

        logger.info("Starting on-demand scan")
        return await self._run_cycle("(manual)", raise_errors=True)

    def status(self) -> dict[str, Any]:
        """Snapshot of scheduler state for the status endpoint."""
        return {
            "running": self.running,
            "scanning": self.is_scanning,
            "scan_interval_seconds": self.scan_interval_seconds,
            "scan_count": self.scan_count,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
            "last_scan_at": self.last_scan_at.isoformat() if self.last_scan_at else None,
            "last_result": self.last_result.summary() if self.last_result else None,
        }


class DaemonFactory:
    """Factory for creating and running daemon instances."""

    @staticmethod
    def create(
        scan_port: ScanPort,
        scan_interval_seconds: float = 55,
        scan_timeout_seconds: float | None = None,
    ) -> DaemonScanScheduler:
        """Create a new daemon scheduler instance."""
        return DaemonScanScheduler(
            scan_port=scan_port,
            scan_interval_seconds=scan_interval_seconds,
            scan_timeout_seconds=scan_timeout_seconds,
        )

    @staticmethod
    async def run_single_scan(scan_port: ScanPort) -> ScanResult:
        """Run a single scan (non-daemon mode).

        Args:
            scan_port: ScanPort implementation to call.
        """
        try:
            logger.info("Running single scan")
            result = await scan_port.execute_scan()
            logger.info(
                f"Scan completed: {result.deployments_seen} deployments, "
                f"{result.watches_dispatched} watches dispatched, "
                f"{result.deployments_failed} failed"
            )
            return result
        except Exception as e:
            logger.error(f"Error in scan: {e}", exc_info=True)
            raise
