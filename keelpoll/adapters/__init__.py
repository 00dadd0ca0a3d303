"""External adapters for the keelpoll trigger.

This package contains all external dependencies (Kubernetes API, watcher
services, HTTP servers, etc.) and provides implementations of the core
port interfaces.

Adapter Organization:

- cluster/: Adapters for enumerating namespaces and deployments (Kubernetes)
- watcher/: Adapters for registering image watches (in-memory, HTTP)
- scheduler/: Adapters for driving the scan loop (daemon)
- webhook/: HTTP server for health, status and manual scans
"""
