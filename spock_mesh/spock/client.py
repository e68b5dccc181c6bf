"""
Spock Client

Thin wrapper over the spock.* SQL functions and catalog tables of a single
cluster. Every statement is parameterized; table identifiers are composed
with psycopg2.sql after validation in spock_mesh.utils.identifiers.

Calls open a fresh autocommit connection each, unless a session is open
(see SpockClient.session), in which case they share the session connection.
Spock's repair mode is session scoped, so anything that must run under it
has to happen inside one session.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional

import psycopg2
import psycopg2.errors
from psycopg2 import sql
from psycopg2.extras import RealDictCursor

from spock_mesh.exceptions import SpockError, SyncWaitUnavailable
from spock_mesh.utils.identifiers import regclass_literal, table_identifier

logger = logging.getLogger(__name__)


class SubscriptionStatus(str, Enum):
    """Live subscription status as seen by the reconciler."""

    UP = "up"
    DOWN = "down"
    INITIALIZING = "initializing"
    UNKNOWN = "unknown"

    @classmethod
    def from_spock(cls, status: Optional[str]) -> "SubscriptionStatus":
        """Map a sub_show_status value onto the reconciler's statuses."""
        mapping = {
            "replicating": cls.UP,
            "initializing": cls.INITIALIZING,
            "down": cls.DOWN,
            # a disabled subscription does not replicate; treat it as down
            "disabled": cls.DOWN,
        }
        return mapping.get((status or "").lower(), cls.UNKNOWN)


@dataclass(frozen=True)
class NodeInfo:
    node_id: int
    node_name: str


@dataclass(frozen=True)
class SubscriptionInfo:
    """
    A subscription row on the subscriber.

    Attributes:
        name: Subscription name
        origin_id: Node id of the provider recorded at creation time
        origin_name: Name of that node on the subscriber, None if the node
            record is gone
        enabled: Whether the subscription is enabled
    """

    name: str
    origin_id: Optional[int]
    origin_name: Optional[str]
    enabled: bool = True


class SpockClient:
    """Remote procedure surface of one cluster."""

    def __init__(self, cluster, connect_timeout: int = 10):
        """
        Args:
            cluster: Cluster to talk to
            connect_timeout: libpq connect timeout in seconds
        """
        self.cluster = cluster
        self.connect_timeout = connect_timeout
        self._session = None

    def __repr__(self) -> str:
        return f"SpockClient({self.cluster.name})"

    def _connect(self):
        logger.debug(f"Connecting to {self.cluster.name} at {self.cluster.host}:{self.cluster.port}")
        conn = psycopg2.connect(self.cluster.dsn, connect_timeout=self.connect_timeout)
        conn.autocommit = True
        return conn

    @contextmanager
    def session(self) -> Iterator["SpockClient"]:
        """
        Share one connection between all calls made inside the block.

        Nested sessions reuse the outer connection.
        """
        if self._session is not None:
            yield self
            return

        try:
            conn = self._connect()
        except psycopg2.Error as e:
            raise SpockError(self.cluster.name, "connect", str(e).strip(), e) from e

        self._session = conn
        try:
            yield self
        finally:
            self._session = None
            conn.close()

    @contextmanager
    def _cursor(self, operation: str):
        try:
            if self._session is not None:
                with self._session.cursor(cursor_factory=RealDictCursor) as cursor:
                    yield cursor
            else:
                conn = self._connect()
                try:
                    with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                        yield cursor
                finally:
                    conn.close()
        except psycopg2.Error as e:
            raise SpockError(self.cluster.name, operation, str(e).strip(), e) from e

    def _fetchall(self, operation: str, query, params=None) -> List[dict]:
        with self._cursor(operation) as cursor:
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def _fetchone(self, operation: str, query, params=None) -> Optional[dict]:
        with self._cursor(operation) as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return dict(row) if row is not None else None

    # Connectivity

    def ping(self) -> None:
        """Trivial round trip; raises SpockError when the cluster is unreachable."""
        self._fetchone("ping", "SELECT 1 AS ok")

    # Nodes

    def local_node_id(self) -> Optional[int]:
        """Id of this cluster's own node, None if it has not been created."""
        row = self._fetchone(
            "local_node",
            "SELECT n.node_id FROM spock.local_node l "
            "JOIN spock.node n ON n.node_id = l.node_id"
        )
        return row["node_id"] if row else None

    def list_nodes(self) -> List[NodeInfo]:
        rows = self._fetchall(
            "list_nodes",
            "SELECT node_id, node_name FROM spock.node ORDER BY node_name"
        )
        return [NodeInfo(row["node_id"], row["node_name"]) for row in rows]

    def get_node(self, name: str) -> Optional[NodeInfo]:
        row = self._fetchone(
            "get_node",
            "SELECT node_id, node_name FROM spock.node WHERE node_name = %s",
            (name,)
        )
        return NodeInfo(row["node_id"], row["node_name"]) if row else None

    def create_node(self, name: str, dsn: str) -> int:
        """Register a node; fails if one with that name exists."""
        row = self._fetchone(
            "node_create",
            "SELECT spock.node_create(node_name := %s, dsn := %s) AS node_id",
            (name, dsn)
        )
        return row["node_id"]

    def drop_node(self, name: str, cascade: bool = False) -> None:
        """
        Drop a node.

        Args:
            name: Node name
            cascade: Drop subscriptions whose provider is this node first
        """
        if cascade:
            for subscription in self.list_subscriptions():
                if subscription.origin_name == name:
                    self.drop_subscription(subscription.name)

        self._fetchone(
            "node_drop",
            "SELECT spock.node_drop(node_name := %s, ifexists := true)",
            (name,)
        )

    # Subscriptions

    def list_subscriptions(self) -> List[SubscriptionInfo]:
        rows = self._fetchall(
            "list_subscriptions",
            "SELECT s.sub_name, s.sub_origin, n.node_name AS origin_name, s.sub_enabled "
            "FROM spock.subscription s "
            "LEFT JOIN spock.node n ON n.node_id = s.sub_origin "
            "ORDER BY s.sub_name"
        )
        return [
            SubscriptionInfo(row["sub_name"], row["sub_origin"], row["origin_name"], row["sub_enabled"])
            for row in rows
        ]

    def get_subscription(self, name: str) -> Optional[SubscriptionInfo]:
        row = self._fetchone(
            "get_subscription",
            "SELECT s.sub_name, s.sub_origin, n.node_name AS origin_name, s.sub_enabled "
            "FROM spock.subscription s "
            "LEFT JOIN spock.node n ON n.node_id = s.sub_origin "
            "WHERE s.sub_name = %s",
            (name,)
        )
        if row is None:
            return None
        return SubscriptionInfo(row["sub_name"], row["sub_origin"], row["origin_name"], row["sub_enabled"])

    def subscription_status(self, name: str) -> SubscriptionStatus:
        row = self._fetchone(
            "sub_show_status",
            "SELECT status FROM spock.sub_show_status(subscription_name := %s)",
            (name,)
        )
        return SubscriptionStatus.from_spock(row["status"] if row else None)

    def create_subscription(
        self,
        name: str,
        provider_dsn: str,
        replication_sets: Iterable[str],
        synchronize_data: bool,
        forward_origins: Iterable[str] = (),
    ) -> None:
        self._fetchone(
            "sub_create",
            "SELECT spock.sub_create("
            "subscription_name := %s, provider_dsn := %s, "
            "replication_sets := %s::text[], synchronize_structure := false, "
            "synchronize_data := %s, forward_origins := %s::text[])",
            (name, provider_dsn, list(replication_sets), synchronize_data, list(forward_origins))
        )

    def drop_subscription(self, name: str, ifexists: bool = True) -> None:
        self._fetchone(
            "sub_drop",
            "SELECT spock.sub_drop(subscription_name := %s, ifexists := %s)",
            (name, ifexists)
        )

    def disable_subscription(self, name: str, immediate: bool = True) -> None:
        self._fetchone(
            "sub_disable",
            "SELECT spock.sub_disable(subscription_name := %s, immediate := %s)",
            (name, immediate)
        )

    def enable_subscription(self, name: str, immediate: bool = True) -> None:
        self._fetchone(
            "sub_enable",
            "SELECT spock.sub_enable(subscription_name := %s, immediate := %s)",
            (name, immediate)
        )

    def wait_for_sync(self, name: str) -> None:
        """
        Block until the initial copy of a subscription completes.

        Raises:
            SyncWaitUnavailable: If the engine lacks sub_wait_for_sync
            SpockError: If the wait itself fails
        """
        try:
            self._fetchone(
                "sub_wait_for_sync",
                "SELECT spock.sub_wait_for_sync(subscription_name := %s)",
                (name,)
            )
        except SpockError as e:
            if isinstance(e.cause, psycopg2.errors.UndefinedFunction):
                raise SyncWaitUnavailable(
                    self.cluster.name, "sub_wait_for_sync", "function not available", e.cause
                ) from e
            raise

    def set_repair_mode(self, enabled: bool) -> None:
        self._fetchone("repair_mode", "SELECT spock.repair_mode(%s)", (enabled,))

    # Replication sets and tables

    def replication_set_exists(self, name: str) -> bool:
        row = self._fetchone(
            "repset_exists",
            "SELECT 1 AS present FROM spock.replication_set WHERE set_name = %s",
            (name,)
        )
        return row is not None

    def create_replication_set(self, name: str) -> None:
        self._fetchone("repset_create", "SELECT spock.repset_create(set_name := %s)", (name,))

    def table_exists(self, table: str) -> bool:
        row = self._fetchone(
            "table_exists",
            "SELECT to_regclass(%s) IS NOT NULL AS present",
            (regclass_literal(table),)
        )
        return bool(row and row["present"])

    def create_table(self, table: str) -> None:
        """Create a table with the minimal fallback schema."""
        query = sql.SQL("CREATE TABLE IF NOT EXISTS {} (id SERIAL PRIMARY KEY, val TEXT)").format(
            table_identifier(table)
        )
        with self._cursor("create_table") as cursor:
            cursor.execute(query)

    def table_in_replication_set(self, set_name: str, table: str) -> bool:
        row = self._fetchone(
            "repset_has_table",
            "SELECT 1 AS present FROM spock.replication_set r "
            "JOIN spock.replication_set_table rt ON r.set_id = rt.set_id "
            "WHERE r.set_name = %s AND rt.set_reloid = %s::regclass",
            (set_name, regclass_literal(table))
        )
        return row is not None

    def add_table_to_replication_set(self, set_name: str, table: str, synchronize_data: bool = True) -> None:
        self._fetchone(
            "repset_add_table",
            "SELECT spock.repset_add_table("
            "set_name := %s, relation := %s::regclass, synchronize_data := %s)",
            (set_name, regclass_literal(table), synchronize_data)
        )

    def table_has_rows(self, table: str) -> bool:
        query = sql.SQL("SELECT EXISTS (SELECT 1 FROM {}) AS has_rows").format(table_identifier(table))
        row = self._fetchone("table_has_rows", query)
        return bool(row and row["has_rows"])
