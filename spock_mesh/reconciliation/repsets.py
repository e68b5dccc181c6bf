"""
Replication set reconciliation.
"""

import logging
from typing import Iterable

from spock_mesh.reconciliation.report import ClusterResult

logger = logging.getLogger(__name__)


class ReplicationSetReconciler:
    """
    Ensures the replication set exists and every desired table is a member.

    Missing tables are created with a minimal (id, val) schema. That is a
    convenience for empty clusters, not a migration tool: real deployments
    manage their tables elsewhere.
    """

    def __init__(self, set_name: str = "default"):
        self.set_name = set_name

    def reconcile(self, client, tables: Iterable[str], result: ClusterResult) -> ClusterResult:
        """
        Args:
            client: SpockClient of the cluster
            tables: Desired table list
            result: Result record to fill in

        Raises:
            SpockError: If a remote call fails
        """
        name = client.cluster.name

        if not client.replication_set_exists(self.set_name):
            client.create_replication_set(self.set_name)
            result.replication_set_created = True
            logger.info(f"Created replication set {self.set_name} on {name}")

        for table in tables:
            if not client.table_exists(table):
                client.create_table(table)
                result.tables_created.append(table)
                logger.info(f"Created table {table} on {name}")

            if not client.table_in_replication_set(self.set_name, table):
                client.add_table_to_replication_set(self.set_name, table, synchronize_data=True)
                result.tables_added.append(table)
                logger.info(f"Added {table} to replication set {self.set_name} on {name}")

        return result
