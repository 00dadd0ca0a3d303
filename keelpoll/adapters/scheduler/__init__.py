"""Scheduler adapters for driving the scan loop.

- Daemon (asyncio loop with a fixed interval and a stop signal)
"""
