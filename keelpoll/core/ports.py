"""Port interfaces for the keelpoll trigger.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - ClusterPort: Enumerate namespaces and deployments
   - WatcherPort: Register or refresh image watches

2. **Driving Ports** (adapters/external systems call into core)
   - ScanPort: Entry point for a single scan
"""

import asyncio
from abc import ABC, abstractmethod

from .models import Deployment, ScanResult, WatchRequest


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class ClusterPort(ABC):
    """Port for reading deployments from the cluster.

    Adapters implementing this port read from a cluster API (or any
    other backing store) and normalize objects into core Deployments.
    The core never writes through this port.
    """

    @abstractmethod
    async def list_namespaces(self) -> list[str]:
        """List every namespace visible to the accessor.

        Returns:
            Namespace names in the order the backend returns them.

        Raises:
            Exception: If the cluster is unreachable or access is denied.
                A scan cannot proceed without this list.
        """

    @abstractmethod
    async def list_deployments(self, namespace: str) -> list[Deployment]:
        """List deployments in a single namespace.

        Args:
            namespace: Namespace name as returned by list_namespaces().

        Returns:
            Deployments in the order the backend returns them.

        Raises:
            Exception: If the namespace cannot be listed. Callers treat
                this as non-fatal and skip the namespace.
        """


class WatcherPort(ABC):
    """Port for registering image watches.

    The watcher owns subscription lifecycle and the actual polling of
    image repositories. It is the source of truth for whether an image
    is already watched.
    """

    @abstractmethod
    async def watch(self, request: WatchRequest) -> None:
        """Start or refresh a watch for an image.

        Must be idempotent per image reference: calling it again for an
        image already being watched refreshes the subscription rather
        than creating a duplicate.

        Args:
            request: Image reference, schedule, and reserved fields.

        Raises:
            Exception: If the watch could not be registered.
        """


# ============================================================================
# DRIVING PORTS (External systems call into core)
# ============================================================================


class ScanPort(ABC):
    """Port for running scans.

    Driving port: the scheduler and the HTTP adapter invoke this to
    reconcile poll-triggered deployments with the watcher.
    """

    @abstractmethod
    async def execute_scan(
        self, stop_event: asyncio.Event | None = None
    ) -> ScanResult:
        """Run one scan over every deployment in the cluster.

        Args:
            stop_event: Optional cancellation signal checked between
                deployments. When set, remaining deployments are skipped
                and the result is marked cancelled.

        Returns:
            Summary of the scan, including per-deployment outcomes.

        Raises:
            Exception: If the namespace list could not be retrieved.
        """
