"""
Prometheus Metrics for mesh reconciliation

Records the outcome of each reconciliation pass. Metrics live on their own
CollectorRegistry so they can be pushed to a Pushgateway after a pass or
exposed over HTTP when the reconciler runs continuously.
"""

import logging
from typing import Dict, Optional
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    push_to_gateway,
    start_http_server,
)

logger = logging.getLogger(__name__)


class ReconciliationMetrics:
    """Prometheus metrics for reconciliation passes."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Args:
            registry: Registry to register metrics on (a private one by default)
        """
        self.registry = registry or CollectorRegistry()

        self.runs_total = Counter(
            'spock_mesh_reconciliation_runs_total',
            'Total number of reconciliation passes',
            ['status'],
            registry=self.registry
        )

        self.edge_outcomes_total = Counter(
            'spock_mesh_edge_outcomes_total',
            'Edges processed, by action taken and final state',
            ['action', 'state'],
            registry=self.registry
        )

        self.cluster_failures_total = Counter(
            'spock_mesh_cluster_failures_total',
            'Clusters whose node or replication set reconciliation failed',
            ['cluster'],
            registry=self.registry
        )

        self.active_edges = Gauge(
            'spock_mesh_active_edges',
            'Edges active after the last pass',
            registry=self.registry
        )

        self.skipped_edges = Gauge(
            'spock_mesh_skipped_edges',
            'Edges skipped in the last pass',
            registry=self.registry
        )

        self.desired_edges = Gauge(
            'spock_mesh_desired_edges',
            'Size of the desired edge set',
            registry=self.registry
        )

        self.run_duration_seconds = Histogram(
            'spock_mesh_reconciliation_duration_seconds',
            'Duration of reconciliation passes in seconds',
            buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600],
            registry=self.registry
        )

        logger.debug("ReconciliationMetrics initialized")

    def record_report(self, report) -> None:
        """
        Record a finished reconciliation pass.

        Args:
            report: ReconciliationReport of the pass
        """
        status = "converged" if report.converged else "partial"
        self.runs_total.labels(status=status).inc()
        self.run_duration_seconds.observe(report.duration_seconds)

        for edge in report.edges:
            self.edge_outcomes_total.labels(
                action=edge.action.value,
                state=edge.state.value
            ).inc()

        for cluster in report.clusters:
            if not cluster.ok:
                self.cluster_failures_total.labels(cluster=cluster.cluster).inc()

        self.desired_edges.set(len(report.edges))
        self.active_edges.set(report.active_edges)
        self.skipped_edges.set(report.skipped_edges)

        logger.debug(
            f"Recorded pass {report.run_id}: status={status}, "
            f"active={report.active_edges}, skipped={report.skipped_edges}"
        )

    def record_failure(self) -> None:
        """Record a pass that aborted before producing a report."""
        self.runs_total.labels(status="failed").inc()

    def push(
        self,
        gateway_url: str,
        job_name: str = "spock_mesh",
        grouping_key: Optional[Dict] = None
    ) -> None:
        """
        Push metrics to a Prometheus Pushgateway.

        Raises:
            Exception: If push fails
        """
        try:
            push_to_gateway(
                gateway_url,
                job=job_name,
                registry=self.registry,
                grouping_key=grouping_key or {}
            )
            logger.info(f"Pushed metrics to gateway: {gateway_url}")
        except Exception as e:
            logger.error(f"Failed to push metrics to gateway: {e}")
            raise

    def start_server(self, port: int) -> None:
        """Expose metrics over HTTP for scraping."""
        try:
            start_http_server(port, registry=self.registry)
            logger.info(f"Metrics server started on port {port}")
        except OSError as e:
            if "Address already in use" in str(e):
                logger.warning(f"Metrics server already running on port {port}")
            else:
                raise
