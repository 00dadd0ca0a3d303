"""Watcher adapters for registering image watches.

Implementations of WatcherPort:
- In-memory (process-local subscription registry)
- HTTP (forwards to an external watcher service)
"""
