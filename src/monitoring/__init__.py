"""
Monitoring Module for merged table sync

Prometheus metrics for sync runs, write actions, throttling and errors.

Usage:
    from src.monitoring import SyncMetrics

    metrics = SyncMetrics()
    metrics.record_write_action(
        table="Team A Mapping Merged Table",
        action_type="INSERT",
        status="success",
        count=10
    )
"""

from src.monitoring.metrics import SyncMetrics, get_sync_metrics

__all__ = [
    "SyncMetrics",
    "get_sync_metrics",
]

__version__ = "1.0.0"
