"""
Subscription topology reconciliation.

The desired topology is a full mesh: for N clusters, N*(N-1) directed edges
src -> tgt, each realized as a subscription on src whose provider is tgt.
Edges are processed one at a time, source outer, target inner.

Per edge:

    ABSENT                      -> create
    ACTIVE, correct target      -> leave alone
    ACTIVE, stale target / down -> drop, then create

An edge that cannot be dropped or created is skipped for this pass and
picked up again on the next one.
"""

import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from spock_mesh.exceptions import SpockError, SyncWaitUnavailable
from spock_mesh.reconciliation.repair_mode import RepairModeGuard
from spock_mesh.reconciliation.report import EdgeAction, EdgeResult, EdgeState
from spock_mesh.reconciliation.sync_policy import SyncPolicy
from spock_mesh.spock.client import SubscriptionStatus
from spock_mesh.utils.identifiers import subscription_name

logger = logging.getLogger(__name__)


class DesiredEdgeSet:
    """All ordered pairs (src, tgt), src != tgt, over the desired clusters."""

    def __init__(self, clusters: Iterable):
        self.clusters = tuple(clusters)

    def __iter__(self) -> Iterator[Tuple]:
        for source in self.clusters:
            for target in self.clusters:
                if source.name != target.name:
                    yield source, target

    def __len__(self) -> int:
        n = len(self.clusters)
        return n * (n - 1)

    def names(self) -> List[str]:
        return [subscription_name(src.name, tgt.name) for src, tgt in self]


class SubscriptionReconciler:
    """
    Converges the subscriptions of the mesh, one edge at a time.
    """

    def __init__(
        self,
        clients: Dict[str, object],
        sync_policy: SyncPolicy,
        replication_set: str = "default",
        forward_origins: Iterable[str] = (),
        wait_for_sync: bool = True,
        guard_factory: Callable = RepairModeGuard,
    ):
        """
        Args:
            clients: SpockClient per cluster name
            sync_policy: Decides synchronize_data for created edges
            replication_set: Replication set every subscription uses
            forward_origins: forward_origins passed to sub_create
            wait_for_sync: Wait for the initial copy after creation
            guard_factory: Builds the repair mode guard for a subscriber
        """
        self.clients = clients
        self.sync_policy = sync_policy
        self.replication_set = replication_set
        self.forward_origins = tuple(forward_origins)
        self.wait_for_sync = wait_for_sync
        self.guard_factory = guard_factory

    def reconcile(self, edges: DesiredEdgeSet, skip: Iterable[str] = ()) -> List[EdgeResult]:
        """
        Reconcile every edge of the desired set.

        Args:
            edges: Desired edge set
            skip: Cluster names whose edges are not touched this pass

        Returns:
            One EdgeResult per edge, in iteration order
        """
        skip = set(skip)
        results = []

        for source, target in edges:
            if source.name in skip or target.name in skip:
                unavailable = source.name if source.name in skip else target.name
                result = EdgeResult(
                    source.name, target.name, subscription_name(source.name, target.name),
                    state=EdgeState.SKIPPED,
                    detail=f"cluster {unavailable} was not reconciled this pass",
                )
                logger.warning(f"Skipping {result.subscription}: {result.detail}")
            else:
                result = self.reconcile_edge(source, target)
            results.append(result)

        return results

    def reconcile_edge(self, source, target) -> EdgeResult:
        """
        Bring one edge source -> target to the desired state.

        Never raises for remote failures; they end up in the result.
        """
        subscriber = self.clients[source.name]
        provider = self.clients[target.name]
        name = subscription_name(source.name, target.name)
        result = EdgeResult(source.name, target.name, name)

        try:
            existing = subscriber.get_subscription(name)
        except SpockError as e:
            return self._skip(result, f"cannot read subscription: {e}")

        previous_status = None

        if existing is not None:
            try:
                target_node_id = provider.local_node_id()
                previous_status = subscriber.subscription_status(name)
            except SpockError as e:
                return self._skip(result, f"cannot inspect edge: {e}")

            stale_target = target_node_id is None or existing.origin_id != target_node_id
            if not stale_target and previous_status != SubscriptionStatus.DOWN:
                logger.info(f"Subscription {name} exists and is correct ({previous_status.value})")
                return result

            reason = (
                f"target node id {existing.origin_id} != current {target_node_id}"
                if stale_target else "subscription is down"
            )
            logger.warning(f"Subscription {name} is stale: {reason}; recreating")

            if not self._drop(subscriber, name):
                return self._skip(result, "could not drop stale subscription")

            if stale_target and existing.origin_name:
                self._forget_provider_node(subscriber, existing.origin_name)

            result.action = EdgeAction.RECREATE
        else:
            result.action = EdgeAction.CREATE

        return self._create(subscriber, target, result, previous_status)

    def _drop(self, subscriber, name: str) -> bool:
        try:
            subscriber.drop_subscription(name)
            return True
        except SpockError as e:
            logger.warning(f"Direct drop of {name} failed, disabling first: {e}")

        try:
            subscriber.disable_subscription(name, immediate=True)
            subscriber.drop_subscription(name)
            return True
        except SpockError as e:
            logger.error(f"Could not drop {name} on {subscriber.cluster.name}: {e}")
            return False

    def _forget_provider_node(self, subscriber, node_name: str) -> None:
        """Drop the subscriber's record of a provider node that was re-created."""
        if node_name == subscriber.cluster.node_name:
            return
        try:
            subscriber.drop_node(node_name)
            logger.info(f"Dropped stale node record {node_name} on {subscriber.cluster.name}")
        except SpockError as e:
            logger.warning(f"Could not drop stale node record {node_name} on {subscriber.cluster.name}: {e}")

    def _create(
        self,
        subscriber,
        target,
        result: EdgeResult,
        previous_status: Optional[SubscriptionStatus],
    ) -> EdgeResult:
        name = result.subscription
        synchronize_data = self.sync_policy.decide(subscriber)
        result.synchronize_data = synchronize_data
        created = False

        try:
            with self.guard_factory(subscriber):
                subscriber.create_subscription(
                    name,
                    provider_dsn=target.dsn,
                    replication_sets=[self.replication_set],
                    synchronize_data=synchronize_data,
                    forward_origins=self.forward_origins,
                )
                created = True
                subscriber.enable_subscription(name, immediate=True)
                logger.info(
                    f"Created subscription {name} "
                    f"({result.source} -> {result.target}, synchronize_data={synchronize_data})"
                )

                if synchronize_data or previous_status == SubscriptionStatus.INITIALIZING:
                    self._await_sync(subscriber, result)

        except SpockError as e:
            if created:
                self._discard(subscriber, name)
            if result.action == EdgeAction.CREATE:
                result.action = EdgeAction.NONE
            return self._skip(result, f"create failed: {e}")

        return result

    def _discard(self, subscriber, name: str) -> None:
        """Remove a subscription that was created but never enabled."""
        try:
            subscriber.drop_subscription(name)
            logger.info(f"Dropped half-created subscription {name} on {subscriber.cluster.name}")
        except SpockError as e:
            logger.warning(
                f"Could not drop half-created subscription {name} on {subscriber.cluster.name}: {e}"
            )

    def _await_sync(self, subscriber, result: EdgeResult) -> None:
        if not self.wait_for_sync:
            result.state = EdgeState.DEGRADED
            result.detail = "initial copy not awaited"
            return

        name = result.subscription
        logger.info(f"Waiting for initial copy of {name}...")
        try:
            subscriber.wait_for_sync(name)
            logger.info(f"Initial copy of {name} complete")
        except SyncWaitUnavailable:
            result.state = EdgeState.DEGRADED
            result.detail = "sync wait unavailable; monitor initial copy manually"
            logger.warning(f"{name}: {result.detail}")
        except SpockError as e:
            result.state = EdgeState.DEGRADED
            result.detail = f"sync wait failed: {e}"
            logger.warning(f"{name}: {result.detail}")

    def _skip(self, result: EdgeResult, detail: str) -> EdgeResult:
        result.state = EdgeState.SKIPPED
        result.detail = detail
        logger.warning(f"Skipping {result.subscription} this pass: {detail}")
        return result
