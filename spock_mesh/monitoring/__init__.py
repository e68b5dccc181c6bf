"""
Monitoring Module for the mesh reconciler

Usage:
    from spock_mesh.monitoring import ReconciliationMetrics

    metrics = ReconciliationMetrics()
    metrics.record_report(report)
    metrics.push("pushgateway:9091")
"""

from spock_mesh.monitoring.metrics import ReconciliationMetrics

__all__ = [
    "ReconciliationMetrics",
]
