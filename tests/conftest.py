"""
Pytest configuration and shared fixtures.

Provides an in-memory stand-in for a set of Spock clusters. Each FakeDatabase
keeps nodes, subscriptions, replication sets and tables the way the spock
catalog does, and FakeSpockClient exposes the same methods as SpockClient,
so whole reconciliation passes can run without PostgreSQL.
"""

import itertools
from contextlib import contextmanager
from typing import Dict, List, Optional

import pytest

from spock_mesh.config import ClusterRegistry
from spock_mesh.exceptions import SpockError, SyncWaitUnavailable
from spock_mesh.reconciliation.readiness import ReadinessProbe
from spock_mesh.spock.client import NodeInfo, SubscriptionInfo, SubscriptionStatus

MUTATING_OPERATIONS = {
    "node_create",
    "node_drop",
    "sub_create",
    "sub_drop",
    "sub_disable",
    "sub_enable",
    "repset_create",
    "repset_add_table",
    "create_table",
}


class FakeDatabase:
    """Spock catalog state of one cluster."""

    def __init__(self, name: str):
        self.name = name
        self.nodes: Dict[str, int] = {}
        self.local_node: Optional[str] = None
        self.subscriptions: Dict[str, dict] = {}
        self.replication_sets: Dict[str, set] = {}
        self.tables: Dict[str, int] = {}
        self.repair_mode = False
        self.repair_log: List[bool] = []
        self.calls: List[str] = []
        self.failures: Dict[str, int] = {}
        self.reachable = True
        self.unreachable_attempts = 0
        self.sync_wait_available = True
        self.sessions_opened = 0

    def fail(self, operation: str, times: int = -1) -> None:
        """Make an operation fail `times` times (-1: always)."""
        self.failures[operation] = times

    def mutations(self) -> List[str]:
        return [call for call in self.calls if call in MUTATING_OPERATIONS]


class FakeMesh:
    """A set of fake clusters sharing a node id sequence."""

    def __init__(self):
        self.databases: Dict[str, FakeDatabase] = {}
        self._by_dsn: Dict[str, str] = {}
        self._ids = itertools.count(1000)

    def next_id(self) -> int:
        return next(self._ids)

    def database(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    def client(self, cluster) -> "FakeSpockClient":
        self._by_dsn[cluster.dsn] = cluster.name
        self.database(cluster.name)
        return FakeSpockClient(cluster, self)

    def provider_for(self, dsn: str) -> FakeDatabase:
        return self.databases[self._by_dsn[dsn]]

    def recreate_node(self, name: str) -> int:
        """Drop and recreate a cluster's own node, giving it a new id."""
        db = self.databases[name]
        new_id = self.next_id()
        db.nodes[db.local_node] = new_id
        return new_id

    def mutations(self) -> List[str]:
        return [call for db in self.databases.values() for call in db.mutations()]

    def active_subscriptions(self) -> List[str]:
        return sorted(
            name
            for db in self.databases.values()
            for name, sub in db.subscriptions.items()
            if sub["status"] == SubscriptionStatus.UP
        )


class FakeSpockClient:
    """In-memory implementation of the SpockClient interface."""

    def __init__(self, cluster, mesh: FakeMesh):
        self.cluster = cluster
        self.mesh = mesh
        self.db = mesh.database(cluster.name)

    def _call(self, operation: str) -> None:
        db = self.db
        db.calls.append(operation)

        if not db.reachable:
            if db.unreachable_attempts:
                db.unreachable_attempts -= 1
                if db.unreachable_attempts == 0:
                    db.reachable = True
            raise SpockError(self.cluster.name, operation, "connection refused")

        remaining = db.failures.get(operation)
        if remaining is not None and remaining != 0:
            if remaining > 0:
                db.failures[operation] = remaining - 1
            raise SpockError(self.cluster.name, operation, "injected failure")

    @contextmanager
    def session(self):
        self.db.sessions_opened += 1
        yield self

    def ping(self):
        self._call("ping")

    # Nodes

    def local_node_id(self):
        self._call("local_node")
        if self.db.local_node is None:
            return None
        return self.db.nodes.get(self.db.local_node)

    def list_nodes(self):
        self._call("list_nodes")
        return [NodeInfo(node_id, name) for name, node_id in sorted(self.db.nodes.items())]

    def get_node(self, name):
        self._call("get_node")
        if name not in self.db.nodes:
            return None
        return NodeInfo(self.db.nodes[name], name)

    def create_node(self, name, dsn):
        self._call("node_create")
        if name in self.db.nodes:
            raise SpockError(self.cluster.name, "node_create", f"node {name} already exists")
        node_id = self.mesh.next_id()
        self.db.nodes[name] = node_id
        self.db.local_node = name
        return node_id

    def drop_node(self, name, cascade=False):
        if cascade:
            for subscription in self.list_subscriptions():
                if subscription.origin_name == name:
                    self.drop_subscription(subscription.name)
        self._call("node_drop")
        self.db.nodes.pop(name, None)
        if self.db.local_node == name:
            self.db.local_node = None

    # Subscriptions

    def _origin_name(self, origin_id):
        for name, node_id in self.db.nodes.items():
            if node_id == origin_id:
                return name
        return None

    def _info(self, name):
        sub = self.db.subscriptions[name]
        return SubscriptionInfo(name, sub["origin_id"], self._origin_name(sub["origin_id"]), sub["enabled"])

    def list_subscriptions(self):
        self._call("list_subscriptions")
        return [self._info(name) for name in sorted(self.db.subscriptions)]

    def get_subscription(self, name):
        self._call("get_subscription")
        if name not in self.db.subscriptions:
            return None
        return self._info(name)

    def subscription_status(self, name):
        self._call("sub_show_status")
        sub = self.db.subscriptions.get(name)
        return sub["status"] if sub else SubscriptionStatus.UNKNOWN

    def create_subscription(self, name, provider_dsn, replication_sets, synchronize_data, forward_origins=()):
        self._call("sub_create")
        if name in self.db.subscriptions:
            raise SpockError(self.cluster.name, "sub_create", f"subscription {name} already exists")

        provider = self.mesh.provider_for(provider_dsn)
        if provider.local_node is None:
            raise SpockError(self.cluster.name, "sub_create", "provider has no local node")

        origin_name = provider.local_node
        origin_id = provider.nodes[origin_name]
        known_id = self.db.nodes.get(origin_name)
        if known_id is not None and known_id != origin_id:
            raise SpockError(self.cluster.name, "sub_create", f"node {origin_name} already exists")
        self.db.nodes[origin_name] = origin_id

        self.db.subscriptions[name] = {
            "origin_id": origin_id,
            "status": SubscriptionStatus.DOWN,
            "enabled": False,
            "synchronize_data": synchronize_data,
            "replication_sets": list(replication_sets),
            "forward_origins": list(forward_origins),
            "repair_mode": self.db.repair_mode,
        }

    def drop_subscription(self, name, ifexists=True):
        self._call("sub_drop")
        if name not in self.db.subscriptions and not ifexists:
            raise SpockError(self.cluster.name, "sub_drop", f"subscription {name} not found")
        self.db.subscriptions.pop(name, None)

    def disable_subscription(self, name, immediate=True):
        self._call("sub_disable")
        sub = self.db.subscriptions[name]
        sub["enabled"] = False
        sub["status"] = SubscriptionStatus.DOWN

    def enable_subscription(self, name, immediate=True):
        self._call("sub_enable")
        sub = self.db.subscriptions[name]
        sub["enabled"] = True
        sub["status"] = (
            SubscriptionStatus.INITIALIZING if sub["synchronize_data"] else SubscriptionStatus.UP
        )

    def wait_for_sync(self, name):
        self._call("sub_wait_for_sync")
        if not self.db.sync_wait_available:
            raise SyncWaitUnavailable(self.cluster.name, "sub_wait_for_sync", "function not available")
        self.db.subscriptions[name]["status"] = SubscriptionStatus.UP

    def set_repair_mode(self, enabled):
        self._call("repair_mode")
        self.db.repair_mode = enabled
        self.db.repair_log.append(enabled)

    # Replication sets and tables

    def replication_set_exists(self, name):
        self._call("repset_exists")
        return name in self.db.replication_sets

    def create_replication_set(self, name):
        self._call("repset_create")
        self.db.replication_sets[name] = set()

    def table_exists(self, table):
        self._call("table_exists")
        return table in self.db.tables

    def create_table(self, table):
        self._call("create_table")
        self.db.tables.setdefault(table, 0)

    def table_in_replication_set(self, set_name, table):
        self._call("repset_has_table")
        return table in self.db.replication_sets.get(set_name, set())

    def add_table_to_replication_set(self, set_name, table, synchronize_data=True):
        self._call("repset_add_table")
        self.db.replication_sets[set_name].add(table)

    def table_has_rows(self, table):
        self._call("table_has_rows")
        if table not in self.db.tables:
            raise SpockError(self.cluster.name, "table_has_rows", f"relation {table} does not exist")
        return self.db.tables[table] > 0


def build_registry(names, tables=("t1",), **overrides) -> ClusterRegistry:
    """Registry of clusters with inline credentials."""
    config = {
        "database": "appdb",
        "namespace": "spock",
        "tables": list(tables),
        "clusters": [{"name": name} for name in names],
        "credentials": {name: f"pw-{name}" for name in names},
    }
    config.update(overrides)
    return ClusterRegistry.load(config)


@pytest.fixture
def mesh():
    """Fresh set of empty fake clusters."""
    return FakeMesh()


@pytest.fixture
def instant_probe():
    """Readiness probe that never sleeps."""
    return ReadinessProbe(interval=0, sleep=lambda seconds: None)


@pytest.fixture
def make_reconciler(mesh, instant_probe):
    """Factory: MeshReconciler over the fake mesh for the given cluster names."""
    from spock_mesh.reconciliation.mesh import MeshReconciler

    def _make(names, tables=("t1",), **overrides):
        registry = build_registry(names, tables, **overrides)
        return MeshReconciler(registry, client_factory=mesh.client, readiness_probe=instant_probe)

    return _make
