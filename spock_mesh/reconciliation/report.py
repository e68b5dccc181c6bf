"""
Structured results of a reconciliation pass.

Every edge and every cluster produces a result value; nothing is swallowed.
The report is what the CLI prints and what the metrics are recorded from.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class EdgeAction(str, Enum):
    """What the pass did to an edge."""

    NONE = "none"
    CREATE = "create"
    RECREATE = "recreate"


class EdgeState(str, Enum):
    """
    Where an edge ended up after the pass.

    ACTIVE: exists with the correct target.
    DEGRADED: created, but the initial copy could not be confirmed.
    SKIPPED: transient failure, retried on the next pass.
    """

    ACTIVE = "active"
    DEGRADED = "degraded"
    SKIPPED = "skipped"


@dataclass
class EdgeResult:
    source: str
    target: str
    subscription: str
    action: EdgeAction = EdgeAction.NONE
    state: EdgeState = EdgeState.ACTIVE
    synchronize_data: Optional[bool] = None
    detail: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state != EdgeState.SKIPPED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "subscription": self.subscription,
            "action": self.action.value,
            "state": self.state.value,
            "synchronize_data": self.synchronize_data,
            "detail": self.detail,
        }


@dataclass
class ClusterResult:
    """Outcome of node and replication set reconciliation on one cluster."""

    cluster: str
    node_created: bool = False
    nodes_dropped: List[str] = field(default_factory=list)
    subscriptions_pruned: List[str] = field(default_factory=list)
    replication_set_created: bool = False
    tables_created: List[str] = field(default_factory=list)
    tables_added: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster": self.cluster,
            "node_created": self.node_created,
            "nodes_dropped": list(self.nodes_dropped),
            "subscriptions_pruned": list(self.subscriptions_pruned),
            "replication_set_created": self.replication_set_created,
            "tables_created": list(self.tables_created),
            "tables_added": list(self.tables_added),
            "error": self.error,
        }


@dataclass
class ReconciliationReport:
    run_id: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    clusters: List[ClusterResult] = field(default_factory=list)
    edges: List[EdgeResult] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    @property
    def creates(self) -> int:
        """Subscriptions created, including re-creations, plus nodes created."""
        edge_creates = sum(1 for e in self.edges if e.action != EdgeAction.NONE and e.is_active)
        node_creates = sum(1 for c in self.clusters if c.node_created)
        return edge_creates + node_creates

    @property
    def drops(self) -> int:
        """Subscriptions and nodes dropped during the pass."""
        edge_drops = sum(1 for e in self.edges if e.action == EdgeAction.RECREATE)
        cluster_drops = sum(
            len(c.nodes_dropped) + len(c.subscriptions_pruned) for c in self.clusters
        )
        return edge_drops + cluster_drops

    @property
    def active_edges(self) -> int:
        return sum(1 for e in self.edges if e.is_active)

    @property
    def skipped_edges(self) -> int:
        return sum(1 for e in self.edges if e.state == EdgeState.SKIPPED)

    @property
    def degraded_edges(self) -> int:
        return sum(1 for e in self.edges if e.state == EdgeState.DEGRADED)

    @property
    def converged(self) -> bool:
        """True when every cluster and every edge ended the pass healthy."""
        return (
            all(c.ok for c in self.clusters)
            and all(e.state == EdgeState.ACTIVE for e in self.edges)
        )

    def edge(self, source: str, target: str) -> Optional[EdgeResult]:
        for result in self.edges:
            if result.source == source and result.target == target:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "summary": {
                "clusters": len(self.clusters),
                "edges": len(self.edges),
                "active_edges": self.active_edges,
                "degraded_edges": self.degraded_edges,
                "skipped_edges": self.skipped_edges,
                "creates": self.creates,
                "drops": self.drops,
                "converged": self.converged,
            },
            "clusters": [c.to_dict() for c in self.clusters],
            "edges": [e.to_dict() for e in self.edges],
        }
