"""Core domain logic for the keelpoll trigger.

This package holds the pure scan logic. Apart from croniter, used as a
cron syntax checker, it has no external dependencies; cluster access
and watch registration are handled by the adapters package.
"""

from .models import (
    Container,
    Deployment,
    DeploymentBatch,
    DeploymentCheck,
    Enumeration,
    NamespaceFailure,
    PolicyType,
    ScanResult,
    TriggerType,
    WatchRequest,
)

__all__ = [
    "Container",
    "Deployment",
    "DeploymentBatch",
    "DeploymentCheck",
    "Enumeration",
    "NamespaceFailure",
    "PolicyType",
    "ScanResult",
    "TriggerType",
    "WatchRequest",
]
