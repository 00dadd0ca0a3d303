"""Cluster adapters for enumerating deployments.

Implementations of ClusterPort:
- Kubernetes (official API client)
"""
