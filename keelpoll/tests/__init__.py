"""Test suite for the keelpoll trigger.

Organized into three categories:

1. core/: Unit tests for scan logic, policy and schedule parsing
   - Fast execution, no cluster required
   - Uses in-memory fakes for ports

2. adapters/: Tests for adapter implementations
   - Kubernetes client and watcher service are mocked
   - The HTTP server runs on a local ephemeral port

3. fakes/: Port implementations for testing
   - In-memory ClusterPort, WatcherPort and ScanPort
"""
