"""HTTP adapters for scan control.

Exposes health, status and manual scan endpoints next to the daemon loop.
"""
