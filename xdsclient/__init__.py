"""Asyncio client for the xDS aggregated discovery service: clusters, endpoints and listener filter chains."""

__version__ = "0.1.0"

__all__ = [
    "ads_client",
    "cluster",
    "cluster_resources",
    "discovery",
    "listener",
    "listener_resources",
    "metrics",
]