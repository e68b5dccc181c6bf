"""
Reconciliation Module for the Spock full mesh

Converges a set of clusters to "every cluster subscribes to every other
cluster, every desired table replicated".

Main components:
- readiness: wait for primaries to accept connections
- nodes: node registration and pruning
- repsets: replication set and table membership
- topology: the subscription edge set
- mesh: a whole pass, producing a ReconciliationReport

Usage:
    from spock_mesh.config import ClusterRegistry, load_config
    from spock_mesh.reconciliation import MeshReconciler

    registry = ClusterRegistry.load(load_config("mesh.yaml"))
    report = MeshReconciler(registry).run()
"""

from spock_mesh.reconciliation.mesh import MeshReconciler
from spock_mesh.reconciliation.nodes import NodeReconciler
from spock_mesh.reconciliation.readiness import ReadinessProbe
from spock_mesh.reconciliation.repair_mode import RepairModeGuard
from spock_mesh.reconciliation.report import (
    ClusterResult,
    EdgeAction,
    EdgeResult,
    EdgeState,
    ReconciliationReport,
)
from spock_mesh.reconciliation.repsets import ReplicationSetReconciler
from spock_mesh.reconciliation.sync_policy import SyncPolicy
from spock_mesh.reconciliation.topology import DesiredEdgeSet, SubscriptionReconciler

__all__ = [
    "ClusterResult",
    "DesiredEdgeSet",
    "EdgeAction",
    "EdgeResult",
    "EdgeState",
    "MeshReconciler",
    "NodeReconciler",
    "ReadinessProbe",
    "ReconciliationReport",
    "RepairModeGuard",
    "ReplicationSetReconciler",
    "SubscriptionReconciler",
    "SyncPolicy",
]
