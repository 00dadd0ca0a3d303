"""Fake implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without a cluster or a watcher service:

- FakeClusterPort: In-memory namespaces and deployments
- FakeWatcherPort: Captured watch requests for assertion
- FakeScanPort: Counted scans for scheduler tests
"""

from .cluster import FakeClusterPort, make_deployment
from .scan import FakeScanPort
from .watcher import FakeWatcherPort

__all__ = [
    "FakeClusterPort",
    "FakeScanPort",
    "FakeWatcherPort",
    "make_deployment",
]
