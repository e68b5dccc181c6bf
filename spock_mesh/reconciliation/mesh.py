"""
Mesh reconciler: one full pass over the desired topology.

Phases, strictly in order:
1. wait for every cluster to accept connections
2. reconcile nodes and the replication set on every cluster
3. reconcile every edge of the full mesh

No state is kept between passes; each pass re-reads everything it needs
from the clusters. At most one pass should run against a set of clusters
at a time; this is not enforced.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from spock_mesh.config import ClusterRegistry
from spock_mesh.exceptions import SpockError
from spock_mesh.reconciliation.nodes import NodeReconciler
from spock_mesh.reconciliation.readiness import ReadinessProbe
from spock_mesh.reconciliation.report import ClusterResult, ReconciliationReport
from spock_mesh.reconciliation.repsets import ReplicationSetReconciler
from spock_mesh.reconciliation.sync_policy import SyncPolicy
from spock_mesh.reconciliation.topology import DesiredEdgeSet, SubscriptionReconciler
from spock_mesh.spock.client import SpockClient
from spock_mesh.utils.correlation import CorrelationContext

logger = logging.getLogger(__name__)


class MeshReconciler:
    """Drives a reconciliation pass across all clusters of a registry."""

    def __init__(
        self,
        registry: ClusterRegistry,
        client_factory: Callable = SpockClient,
        readiness_probe: Optional[ReadinessProbe] = None,
    ):
        """
        Args:
            registry: Desired topology
            client_factory: Builds a client for a Cluster
            readiness_probe: Probe used in the readiness phase
        """
        self.registry = registry
        settings = registry.settings

        self.clients = {cluster.name: client_factory(cluster) for cluster in registry.clusters}
        self.readiness_probe = readiness_probe or ReadinessProbe(interval=settings.readiness_interval)
        self.node_reconciler = NodeReconciler()
        self.repset_reconciler = ReplicationSetReconciler(settings.replication_set)
        self.subscription_reconciler = SubscriptionReconciler(
            self.clients,
            SyncPolicy(settings.reference_table),
            replication_set=settings.replication_set,
            forward_origins=settings.forward_origins,
            wait_for_sync=settings.wait_for_sync,
        )

    def await_ready(self) -> None:
        """
        Wait for every cluster, in order.

        Raises:
            ReadinessTimeout: If a readiness timeout is configured and elapses
        """
        timeout = self.registry.settings.readiness_timeout
        for cluster in self.registry.clusters:
            self.readiness_probe.await_ready(self.clients[cluster.name], timeout=timeout)

    def reconcile_cluster(self, cluster) -> ClusterResult:
        """Reconcile the node and replication set of one cluster."""
        client = self.clients[cluster.name]
        result = ClusterResult(cluster.name)

        logger.info(f"Processing cluster: {cluster.name}")
        try:
            self.node_reconciler.reconcile(client, self.registry.clusters, result)
            self.repset_reconciler.reconcile(client, self.registry.tables, result)
        except SpockError as e:
            result.error = str(e)
            logger.error(f"Cluster {cluster.name} could not be reconciled: {e}")

        return result

    def run(self, run_id: Optional[str] = None) -> ReconciliationReport:
        """
        Execute one reconciliation pass.

        Per-cluster and per-edge failures are recorded in the report and do
        not abort the pass.

        Raises:
            ReadinessTimeout: If a cluster never becomes ready
        """
        with CorrelationContext(run_id) as correlation_id:
            report = ReconciliationReport(run_id=correlation_id)
            logger.info(
                f"Starting reconciliation pass over {len(self.registry)} clusters "
                f"and {len(self.registry.tables)} tables"
            )

            self.await_ready()

            for cluster in self.registry.clusters:
                report.clusters.append(self.reconcile_cluster(cluster))

            failed = [c.cluster for c in report.clusters if not c.ok]
            edges = DesiredEdgeSet(self.registry.clusters)
            logger.info(f"Reconciling {len(edges)} subscriptions (full mesh)")
            report.edges = self.subscription_reconciler.reconcile(edges, skip=failed)

            report.finished_at = datetime.now(timezone.utc)

            if report.skipped_edges:
                logger.warning(
                    f"Pass finished with {report.skipped_edges} skipped edge(s); "
                    f"they will be retried on the next pass"
                )
            logger.info(
                f"Reconciliation pass completed in {report.duration_seconds:.2f}s: "
                f"{report.active_edges}/{len(edges)} edges active, "
                f"{report.creates} creates, {report.drops} drops"
            )
            return report

    def status(self, names: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Read-only view of each cluster's node and subscriptions.

        Unreachable clusters are reported with their error.

        Args:
            names: Clusters to report on (default: every cluster)

        Raises:
            KeyError: If a name is not a configured cluster
        """
        names = list(names)
        selected = [self.registry.get(name) for name in names] if names else list(self.registry.clusters)
        edges = DesiredEdgeSet(self.registry.clusters)
        clusters: List[Dict[str, Any]] = []

        for cluster in selected:
            client = self.clients[cluster.name]
            entry: Dict[str, Any] = {"cluster": cluster.name, "node": cluster.node_name}
            try:
                entry["node_id"] = client.local_node_id()
                entry["subscriptions"] = [
                    {
                        "name": sub.name,
                        "provider": sub.origin_name,
                        "provider_node_id": sub.origin_id,
                        "status": client.subscription_status(sub.name).value,
                    }
                    for sub in client.list_subscriptions()
                ]
            except SpockError as e:
                entry["error"] = str(e)
            clusters.append(entry)

        return {
            "desired_edges": len(edges),
            "desired_subscriptions": edges.names(),
            "clusters": clusters,
        }
