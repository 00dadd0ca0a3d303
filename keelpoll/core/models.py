"""Domain models for the keelpoll trigger.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType


@dataclass(frozen=True)
class Container:
    """A single container from a deployment's pod template."""

    name: str
    image: str


@dataclass(frozen=True)
class Deployment:
    """A read-only snapshot of a cluster deployment.

    The cluster owns the lifecycle of the real object; this core only
    ever reads the namespace, name, labels and container images.
    """

    namespace: str
    name: str
    labels: Mapping[str, str] = field(default_factory=dict)  # converted to proxy in __post_init__
    containers: tuple[Container, ...] = ()  # pod template order

    def __post_init__(self) -> None:
        """Convert labels to a read-only proxy and containers to a tuple."""
        if not isinstance(self.labels, MappingProxyType):
            object.__setattr__(
                self, "labels", MappingProxyType(dict(self.labels or {}))
            )
        if not isinstance(self.containers, tuple):
            object.__setattr__(self, "containers", tuple(self.containers))

    @property
    def key(self) -> str:
        """namespace/name identifier used in logs."""
        return f"{self.namespace}/{self.name}"


class PolicyType(Enum):
    """Update policy a deployment opted in to.

    NONE means the deployment is not managed at all and every trigger
    ignores it.
    """

    NONE = "none"
    ALL = "all"
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    FORCE = "force"


class TriggerType(Enum):
    """Which signal drives updates for a deployment."""

    DEFAULT = "default"  # webhooks and event bus, handled elsewhere
    POLL = "poll"


@dataclass(frozen=True)
class WatchRequest:
    """Request for the watcher to start or refresh polling an image.

    The reserved fields are part of the watcher contract but are always
    empty when issued by the scan service.
    """

    image: str
    schedule: str
    reserved1: str = ""
    reserved2: str = ""


@dataclass(frozen=True)
class NamespaceFailure:
    """A namespace whose deployments could not be listed."""

    namespace: str
    error: str


@dataclass(frozen=True)
class DeploymentBatch:
    """Deployments listed from a single namespace."""

    namespace: str
    deployments: tuple[Deployment, ...]


@dataclass(frozen=True)
class Enumeration:
    """Result of walking every namespace visible to the cluster accessor."""

    batches: tuple[DeploymentBatch, ...]
    failures: tuple[NamespaceFailure, ...] = ()

    @property
    def deployments(self) -> tuple[Deployment, ...]:
        """All deployments, flattened in enumeration order."""
        return tuple(d for batch in self.batches for d in batch.deployments)


@dataclass(frozen=True)
class DeploymentCheck:
    """Outcome of processing one poll-triggered deployment.

    When processing aborted, ``error`` is set and ``image``/``schedule``
    identify the container at which it stopped.
    """

    namespace: str
    name: str
    requests: tuple[WatchRequest, ...] = ()
    error: str | None = None
    image: str | None = None
    schedule: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ScanResult:
    """Summary of a single scan."""

    started_at: datetime
    finished_at: datetime
    namespaces_listed: int
    namespace_failures: tuple[NamespaceFailure, ...]
    deployments_seen: int
    deployments_skipped: int  # policy NONE or non-poll trigger
    checks: tuple[DeploymentCheck, ...]
    cancelled: bool = False

    @property
    def requests(self) -> tuple[WatchRequest, ...]:
        """Every watch request dispatched, in dispatch order."""
        return tuple(r for check in self.checks for r in check.requests)

    @property
    def watches_dispatched(self) -> int:
        return len(self.requests)

    @property
    def deployments_failed(self) -> int:
        return sum(1 for check in self.checks if not check.ok)

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> dict[str, object]:
        """JSON-friendly summary used by the status endpoint."""
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "namespaces_listed": self.namespaces_listed,
            "namespace_failures": [
                {"namespace": f.namespace, "error": f.error}
                for f in self.namespace_failures
            ],
            "deployments_seen": self.deployments_seen,
            "deployments_skipped": self.deployments_skipped,
            "deployments_checked": len(self.checks),
            "deployments_failed": self.deployments_failed,
            "watches_dispatched": self.watches_dispatched,
            "cancelled": self.cancelled,
        }
