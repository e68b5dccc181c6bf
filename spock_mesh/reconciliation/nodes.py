"""
Node reconciliation.

Makes the set of Spock nodes on a cluster match the desired clusters:
nodes of removed clusters are dropped (with their subscriptions), dangling
subscriptions are dropped, and the cluster's own node is created if absent.
"""

import logging
from typing import Iterable

from spock_mesh.reconciliation.report import ClusterResult

logger = logging.getLogger(__name__)


class NodeReconciler:
    """Ensures each cluster is registered as a node; prunes undesired nodes."""

    def reconcile(self, client, desired_clusters: Iterable, result: ClusterResult) -> ClusterResult:
        """
        Reconcile nodes on the cluster behind client.

        Args:
            client: SpockClient of the cluster
            desired_clusters: All clusters of the desired topology
            result: Result record to fill in

        Returns:
            The updated result

        Raises:
            SpockError: If a remote call fails
        """
        cluster = client.cluster
        desired = {c.node_name for c in desired_clusters}

        self._cleanup(client, desired, result)

        if client.get_node(cluster.node_name) is None:
            node_id = client.create_node(cluster.node_name, cluster.dsn)
            result.node_created = True
            logger.info(f"Created node {cluster.node_name} (id {node_id}) on {cluster.name}")
        else:
            logger.debug(f"Node {cluster.node_name} already exists on {cluster.name}")

        return result

    def _cleanup(self, client, desired: set, result: ClusterResult) -> None:
        name = client.cluster.name

        for node in client.list_nodes():
            if node.node_name in desired:
                continue
            logger.warning(f"Dropping node {node.node_name} on {name}: not in the desired set")
            client.drop_node(node.node_name, cascade=True)
            result.nodes_dropped.append(node.node_name)

        for subscription in client.list_subscriptions():
            origin = subscription.origin_name
            if origin in desired:
                continue
            logger.warning(
                f"Dropping subscription {subscription.name} on {name}: "
                f"provider node {origin or 'missing'} is not desired"
            )
            client.drop_subscription(subscription.name)
            result.subscriptions_pruned.append(subscription.name)
