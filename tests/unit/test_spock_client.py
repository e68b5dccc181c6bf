"""
Unit tests for the Spock client.

psycopg2.connect is patched; assertions are on the statements and
parameters sent, never on string-built SQL.
"""

import pytest
import psycopg2
import psycopg2.errors
from psycopg2 import sql
from unittest.mock import MagicMock, patch

from spock_mesh.config import Cluster
from spock_mesh.exceptions import SpockError, SyncWaitUnavailable
from spock_mesh.spock.client import SpockClient, SubscriptionInfo, SubscriptionStatus


@pytest.fixture
def cluster():
    return Cluster(name="pg-a", host="pg-a.local", database="appdb", password="pw")


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def mock_connect(cursor):
    with patch("spock_mesh.spock.client.psycopg2.connect") as connect:
        conn = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cursor
        connect.return_value = conn
        yield connect


@pytest.fixture
def client(cluster, mock_connect):
    return SpockClient(cluster)


def executed(cursor):
    """(query, params) of the last execute call."""
    args = cursor.execute.call_args[0]
    return args[0], args[1] if len(args) > 1 else None


class TestConnections:
    """Test connection handling."""

    def test_each_call_opens_and_closes_a_connection(self, client, mock_connect, cursor):
        cursor.fetchone.return_value = {"ok": 1}

        client.ping()
        client.ping()

        assert mock_connect.call_count == 2
        assert mock_connect.return_value.close.call_count == 2
        assert mock_connect.return_value.autocommit is True

    def test_connect_uses_cluster_dsn(self, client, cluster, mock_connect, cursor):
        cursor.fetchone.return_value = {"ok": 1}

        client.ping()

        mock_connect.assert_called_once_with(cluster.dsn, connect_timeout=10)

    def test_session_shares_one_connection(self, client, mock_connect, cursor):
        """Test calls inside a session reuse its connection."""
        cursor.fetchone.return_value = {"ok": 1}

        with client.session():
            client.ping()
            with client.session():
                client.set_repair_mode(True)
            client.set_repair_mode(False)

        assert mock_connect.call_count == 1
        mock_connect.return_value.close.assert_called_once()

    def test_session_closed_on_error(self, client, mock_connect, cursor):
        cursor.execute.side_effect = psycopg2.OperationalError("gone")

        with pytest.raises(SpockError):
            with client.session():
                client.ping()

        mock_connect.return_value.close.assert_called_once()
        assert client._session is None

    def test_connect_failure_becomes_spock_error(self, client, mock_connect):
        """Test driver errors are wrapped with cluster and operation."""
        mock_connect.side_effect = psycopg2.OperationalError("could not connect")

        with pytest.raises(SpockError) as exc_info:
            client.ping()

        assert exc_info.value.cluster == "pg-a"
        assert exc_info.value.operation == "ping"
        assert isinstance(exc_info.value.cause, psycopg2.OperationalError)

    def test_session_connect_failure(self, client, mock_connect):
        mock_connect.side_effect = psycopg2.OperationalError("could not connect")

        with pytest.raises(SpockError, match="connect on pg-a failed"):
            with client.session():
                pass


class TestNodes:
    """Test node operations."""

    def test_local_node_id(self, client, cursor):
        cursor.fetchone.return_value = {"node_id": 17}

        assert client.local_node_id() == 17

    def test_local_node_id_absent(self, client, cursor):
        cursor.fetchone.return_value = None

        assert client.local_node_id() is None

    def test_create_node_is_parameterized(self, client, cursor):
        cursor.fetchone.return_value = {"node_id": 99}

        node_id = client.create_node("pg_a", "host=pg-a.local dbname=appdb")

        query, params = executed(cursor)
        assert "spock.node_create" in query
        assert params == ("pg_a", "host=pg-a.local dbname=appdb")
        assert node_id == 99

    def test_list_nodes(self, client, cursor):
        cursor.fetchall.return_value = [
            {"node_id": 1, "node_name": "pg_a"},
            {"node_id": 2, "node_name": "pg_b"},
        ]

        nodes = client.list_nodes()

        assert [n.node_name for n in nodes] == ["pg_a", "pg_b"]

    def test_drop_node_cascade_drops_dependent_subscriptions(self, client, cursor):
        """Test cascade removes subscriptions from that provider first."""
        cursor.fetchall.return_value = [
            {"sub_name": "sub_a_to_c", "sub_origin": 3, "origin_name": "pg_c", "sub_enabled": True},
            {"sub_name": "sub_a_to_b", "sub_origin": 2, "origin_name": "pg_b", "sub_enabled": True},
        ]
        cursor.fetchone.return_value = {}

        client.drop_node("pg_c", cascade=True)

        statements = [(c[0][0], c[0][1] if len(c[0]) > 1 else None) for c in cursor.execute.call_args_list]
        assert "spock.sub_drop" in statements[1][0]
        assert statements[1][1] == ("sub_a_to_c", True)
        assert "spock.node_drop" in statements[2][0]
        assert statements[2][1] == ("pg_c",)
        assert len(statements) == 3


class TestSubscriptions:
    """Test subscription operations."""

    def test_get_subscription(self, client, cursor):
        cursor.fetchone.return_value = {
            "sub_name": "sub_pg_a_to_pg_b", "sub_origin": 2, "origin_name": "pg_b", "sub_enabled": True,
        }

        info = client.get_subscription("sub_pg_a_to_pg_b")

        assert info == SubscriptionInfo("sub_pg_a_to_pg_b", 2, "pg_b", True)
        assert executed(cursor)[1] == ("sub_pg_a_to_pg_b",)

    def test_get_missing_subscription(self, client, cursor):
        cursor.fetchone.return_value = None

        assert client.get_subscription("sub_x_to_y") is None

    def test_create_subscription_passes_arrays(self, client, cursor):
        cursor.fetchone.return_value = {}

        client.create_subscription(
            "sub_pg_a_to_pg_b", "host=pg-b", ("default",), synchronize_data=True,
        )

        query, params = executed(cursor)
        assert "synchronize_structure := false" in query
        assert params == ("sub_pg_a_to_pg_b", "host=pg-b", ["default"], True, [])

    def test_drop_subscription_ifexists(self, client, cursor):
        cursor.fetchone.return_value = {}

        client.drop_subscription("sub_pg_a_to_pg_b")

        assert executed(cursor)[1] == ("sub_pg_a_to_pg_b", True)

    @pytest.mark.parametrize("raw,expected", [
        ("replicating", SubscriptionStatus.UP),
        ("initializing", SubscriptionStatus.INITIALIZING),
        ("down", SubscriptionStatus.DOWN),
        ("disabled", SubscriptionStatus.DOWN),
        ("something-new", SubscriptionStatus.UNKNOWN),
    ])
    def test_status_mapping(self, client, cursor, raw, expected):
        cursor.fetchone.return_value = {"status": raw}

        assert client.subscription_status("sub_pg_a_to_pg_b") == expected

    def test_status_without_row_is_unknown(self, client, cursor):
        cursor.fetchone.return_value = None

        assert client.subscription_status("sub_pg_a_to_pg_b") == SubscriptionStatus.UNKNOWN

    def test_wait_for_sync_missing_function(self, client, cursor):
        """Test an engine without sub_wait_for_sync raises SyncWaitUnavailable."""
        cursor.execute.side_effect = psycopg2.errors.UndefinedFunction("function does not exist")

        with pytest.raises(SyncWaitUnavailable):
            client.wait_for_sync("sub_pg_a_to_pg_b")

    def test_wait_for_sync_other_failure(self, client, cursor):
        cursor.execute.side_effect = psycopg2.errors.QueryCanceled("timeout")

        with pytest.raises(SpockError) as exc_info:
            client.wait_for_sync("sub_pg_a_to_pg_b")

        assert not isinstance(exc_info.value, SyncWaitUnavailable)

    def test_set_repair_mode(self, client, cursor):
        cursor.fetchone.return_value = {}

        client.set_repair_mode(True)

        query, params = executed(cursor)
        assert "spock.repair_mode" in query
        assert params == (True,)


class TestTables:
    """Test replication set and table operations."""

    def test_table_exists_uses_regclass(self, client, cursor):
        cursor.fetchone.return_value = {"present": True}

        assert client.table_exists("sales.orders") is True
        assert executed(cursor)[1] == ('"sales"."orders"',)

    def test_create_table_composes_identifier(self, client, cursor):
        client.create_table("sales.orders")

        query, _ = executed(cursor)
        assert isinstance(query, sql.Composed)
        assert sql.Identifier("sales", "orders") in query.seq

    def test_add_table_to_replication_set(self, client, cursor):
        cursor.fetchone.return_value = {}

        client.add_table_to_replication_set("default", "t1")

        assert executed(cursor)[1] == ("default", '"t1"', True)

    def test_replication_set_exists(self, client, cursor):
        cursor.fetchone.return_value = None

        assert client.replication_set_exists("default") is False

    def test_table_has_rows(self, client, cursor):
        cursor.fetchone.return_value = {"has_rows": True}

        assert client.table_has_rows("t1") is True
