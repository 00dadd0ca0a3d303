"""Composition root for the keelpoll trigger.

This module is the ONLY location that imports both core domain logic
and concrete adapter implementations. All wiring of dependencies
happens here, creating a clear entry point for the application.

Module Structure:
- Configuration loading via config module
- Adapter instantiation
- Core service initialization
- Entry point selection (daemon, once, webhook)
"""

import asyncio
import json
import logging
import sys

from keelpoll.adapters.cluster.kubernetes import KubernetesClusterAdapter
from keelpoll.adapters.scheduler.daemon import DaemonFactory, DaemonScanScheduler
from keelpoll.adapters.watcher.http import HTTPWatcherAdapter
from keelpoll.adapters.watcher.memory import InMemoryWatcher
from keelpoll.adapters.webhook.http_server import ScanHTTPServer
from keelpoll.config import Settings, load_settings
from keelpoll.core.ports import ClusterPort, WatcherPort
from keelpoll.core.scan_service import ScanService

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime"}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line, with extra= fields as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def build_cluster(settings: Settings) -> ClusterPort:
    """Instantiate the cluster adapter selected by configuration."""
    if settings.cluster_backend == "kubernetes":
        return KubernetesClusterAdapter(
            in_cluster=settings.kube_in_cluster,
            config_file=settings.kube_config_path,
            context=settings.kube_context,
        )
    raise ValueError(f"Unknown cluster backend: {settings.cluster_backend}")


def build_watcher(settings: Settings) -> WatcherPort:
    """Instantiate the watcher adapter selected by configuration."""
    if settings.watcher_backend == "memory":
        return InMemoryWatcher()
    if settings.watcher_backend == "http":
        return HTTPWatcherAdapter(
            api_url=settings.watcher_url,
            token=settings.watcher_token,
        )
    raise ValueError(f"Unknown watcher backend: {settings.watcher_backend}")


def build_scan_service(
    settings: Settings, cluster: ClusterPort, watcher: WatcherPort
) -> ScanService:
    """Wire the scan service with label keys and default schedule."""
    return ScanService(
        cluster=cluster,
        watcher=watcher,
        default_schedule=settings.default_poll_schedule,
        policy_label=settings.policy_label,
        trigger_label=settings.trigger_label,
        schedule_label=settings.poll_schedule_label,
    )


async def bootstrap(settings: Settings | None = None) -> int:
    """Load configuration, wire adapters, and run the selected mode.

    This is the composition root: the single place where all components
    are instantiated and wired together.

    Returns:
        Process exit code.
    """
    # Step 1: Load configuration
    if settings is None:
        settings = load_settings()

    # Step 2: Configure logging
    configure_logging("DEBUG" if settings.debug else settings.log_level, settings.log_format)
    logger = logging.getLogger(__name__)
    logger.info("Loading keelpoll trigger...")

    # Step 3: Instantiate adapters
    cluster = build_cluster(settings)
    logger.info(f"Cluster adapter: {settings.cluster_backend}")
    watcher = build_watcher(settings)
    logger.info(f"Watcher adapter: {settings.watcher_backend}")

    # Step 4: Initialize core services
    scan_service = build_scan_service(settings, cluster, watcher)

    # Step 5: Select run mode and start
    logger.info(f"Starting in {settings.run_mode} mode...")

    try:
        if settings.run_mode == "once":
            await DaemonFactory.run_single_scan(scan_service)
            return 0

        scheduler: DaemonScanScheduler = DaemonFactory.create(
            scan_port=scan_service,
            scan_interval_seconds=settings.scan_interval_seconds,
            scan_timeout_seconds=settings.scan_timeout_seconds,
        )

        if settings.run_mode == "daemon":
            await scheduler.start()
            return 0

        if settings.run_mode == "webhook":
            http_server = ScanHTTPServer(
                scheduler=scheduler,
                host=settings.webhook_host,
                port=settings.webhook_port,
                api_key=settings.webhook_api_key or None,
                require_auth=settings.webhook_require_auth,
                registry=watcher if isinstance(watcher, InMemoryWatcher) else None,
            )
            await http_server.start()
            try:
                await scheduler.start()
            finally:
                await http_server.stop()
            return 0

        logger.error(f"Unknown run mode: {settings.run_mode}")
        return 1

    finally:
        if isinstance(watcher, HTTPWatcherAdapter):
            await watcher.close()


def main() -> None:
    """Application entry point.

    Exit codes:
        0: Successful shutdown
        1: Fatal bootstrap or runtime error
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    logger = logging.getLogger(__name__)
    try:
        exit_code = asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(130)
    except asyncio.CancelledError:
        logger.info("Graceful shutdown completed")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
