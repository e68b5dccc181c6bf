"""
Initial data copy policy for new and repaired subscriptions.
"""

import logging
from typing import Optional

from spock_mesh.exceptions import SpockError

logger = logging.getLogger(__name__)


class SyncPolicy:
    """
    Decides whether a subscription should copy existing rows on creation.

    An empty subscriber is seeded with a full copy. A subscriber that already
    holds rows in the reference table gets no copy, so rows it already has
    are not inserted twice. Without a reference table, or when the table
    cannot be read, no copy is requested.
    """

    def __init__(self, reference_table: Optional[str]):
        self.reference_table = reference_table

    def decide(self, subscriber) -> bool:
        """
        Args:
            subscriber: SpockClient of the subscribing cluster

        Returns:
            True to request synchronize_data
        """
        if not self.reference_table:
            return False

        name = subscriber.cluster.name
        try:
            has_rows = subscriber.table_has_rows(self.reference_table)
        except SpockError as e:
            logger.warning(f"Cannot inspect {self.reference_table} on {name}, not seeding: {e}")
            return False

        if has_rows:
            logger.info(f"{self.reference_table} on {name} has data; skipping initial copy")
            return False

        logger.info(f"{self.reference_table} on {name} is empty; requesting initial copy")
        return True
