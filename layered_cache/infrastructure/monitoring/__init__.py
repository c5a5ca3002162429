"""
Monitoring Module

Prometheus export of cache engine events.
"""

from .metrics_collector import MetricsCollector

__all__ = ["MetricsCollector"]
