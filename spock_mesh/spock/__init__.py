"""
Access to the Spock logical replication extension of a cluster.
"""

from spock_mesh.spock.client import NodeInfo, SpockClient, SubscriptionInfo, SubscriptionStatus

__all__ = [
    "NodeInfo",
    "SpockClient",
    "SubscriptionInfo",
    "SubscriptionStatus",
]
