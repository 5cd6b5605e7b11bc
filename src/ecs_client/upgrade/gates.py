"""Polling gates that hold the upgrade until the new nodes are ready."""

import logging
from typing import FrozenSet, Iterable, List, Mapping, Sequence, Tuple

from ..exceptions import ConvergenceTimeoutError, HealthTimeoutError, RegistrationTimeoutError
from ..models import (
    ClusterMembership,
    FleetDescriptor,
    LaunchIdentifier,
    NodeRecord,
    PollingPolicy,
    TargetHealthRecord,
    TargetState,
)
from ..services.autoscaling import FleetService
from ..services.ecs import ClusterService
from ..services.elbv2 import LoadBalancerService
from .polling import Gate, GateState, Waiter

logger = logging.getLogger(__name__)


def nodes_on(nodes: Iterable[NodeRecord], identifier: LaunchIdentifier) -> List[NodeRecord]:
    return [node for node in nodes if node.launch_identifier == identifier]


def count_healthy(nodes: Iterable[NodeRecord], identifier: LaunchIdentifier) -> int:
    return sum(1 for node in nodes_on(nodes, identifier) if node.is_in_service and node.is_healthy)


def candidate_keys(
    nodes: Sequence[NodeRecord],
    membership: ClusterMembership,
    workload_addresses: Mapping[str, Sequence[str]],
) -> FrozenSet[str]:
    """Every key a target group may use for ``nodes``.

    Instance targets register the instance id, IP targets register either the
    node's own address (bridge/host networking) or the task ENI address (awsvpc).
    """
    keys = set()
    for node in nodes:
        keys.add(node.instance_id)
        keys.update(node.private_ips)
        member = membership.member_for_node(node.instance_id)
        if member is not None:
            keys.update(workload_addresses.get(member.arn, ()))
    return frozenset(keys)


def tally(records: Iterable[TargetHealthRecord], keys: FrozenSet[str]) -> Tuple[int, int]:
    """Count (healthy, unhealthy) target entries whose key belongs to ``keys``."""
    healthy = unhealthy = 0
    for record in records:
        if record.key not in keys:
            continue
        if record.state == TargetState.HEALTHY.value:
            healthy += 1
        elif record.state == TargetState.UNHEALTHY.value:
            unhealthy += 1
    return healthy, unhealthy


class HealthGate(Gate):
    """Waits until enough InService nodes on the new launch definition report Healthy."""

    def __init__(self, fleet_service: FleetService, waiter: Waiter, policy: PollingPolicy):
        super().__init__(waiter, policy)
        self.fleet_service = fleet_service

    def wait(self, fleet: FleetDescriptor, identifier: LaunchIdentifier) -> int:
        required = fleet.desired_capacity

        def condition() -> bool:
            nodes = self.fleet_service.list_nodes(fleet.name)
            healthy = count_healthy(nodes, identifier)
            logger.info(
                "%s: %d/%d node(s) on %s healthy (%d in group)",
                fleet.name,
                healthy,
                required,
                identifier,
                len(nodes),
            )
            return healthy >= required

        return self._await(
            condition, f"{required} healthy node(s) on {identifier}", HealthTimeoutError
        )


class RegistrationGate(Gate):
    """Waits until the cluster sees the expected node count, all ACTIVE."""

    def __init__(self, cluster_service: ClusterService, waiter: Waiter, policy: PollingPolicy):
        super().__init__(waiter, policy)
        self.cluster_service = cluster_service

    def wait(self, cluster: str, expected: int) -> ClusterMembership:
        snapshot = {"membership": ClusterMembership(cluster=cluster)}

        def enough_members() -> bool:
            snapshot["membership"] = self.cluster_service.membership(cluster)
            registered = len(snapshot["membership"])
            logger.info("%s: %d/%d container instance(s) registered", cluster, registered, expected)
            return registered >= expected

        def all_active() -> bool:
            snapshot["membership"] = self.cluster_service.membership(cluster)
            pending = [
                member.instance_id for member in snapshot["membership"].members if not member.is_active
            ]
            if pending:
                logger.info("%s: waiting for %s to become ACTIVE", cluster, ", ".join(pending))
            return not pending

        self._await(
            enough_members, f"{expected} container instance(s) in {cluster}", RegistrationTimeoutError
        )
        self._await(
            all_active, f"all container instances in {cluster} ACTIVE", RegistrationTimeoutError
        )
        return snapshot["membership"]


class ConvergenceGate(Gate):
    """Waits until the target groups report the new nodes healthy and none unhealthy."""

    def __init__(
        self,
        fleet_service: FleetService,
        cluster_service: ClusterService,
        lb_service: LoadBalancerService,
        waiter: Waiter,
        policy: PollingPolicy,
    ):
        super().__init__(waiter, policy)
        self.fleet_service = fleet_service
        self.cluster_service = cluster_service
        self.lb_service = lb_service

    def correlate(self, fleet_name: str, cluster: str, identifier: LaunchIdentifier) -> FrozenSet[str]:
        """Build the candidate key set for nodes launched from ``identifier``."""
        new_nodes = nodes_on(self.fleet_service.list_nodes(fleet_name), identifier)
        addresses = self.fleet_service.private_addresses([node.instance_id for node in new_nodes])
        for node in new_nodes:
            node.private_ips = addresses.get(node.instance_id, [])
        membership = self.cluster_service.membership(cluster)
        tasks = self.cluster_service.list_running_workloads(cluster)
        workload_addresses = (
            self.cluster_service.workload_network_addresses(cluster, tasks) if tasks else {}
        )
        keys = candidate_keys(new_nodes, membership, workload_addresses)
        logger.debug("Target keys for %d new node(s): %s", len(new_nodes), sorted(keys))
        return keys

    def wait(self, fleet_name: str, cluster: str, identifier: LaunchIdentifier) -> int:
        target_groups = self.lb_service.list_target_groups()
        if not target_groups:
            logger.info("No target groups found; skipping load balancer health check")
            self.state = GateState.PASSED
            return 0

        keys = self.correlate(fleet_name, cluster, identifier)

        def condition() -> bool:
            healthy = unhealthy = 0
            for arn in target_groups:
                group_healthy, group_unhealthy = tally(self.lb_service.target_health(arn), keys)
                healthy += group_healthy
                unhealthy += group_unhealthy
            logger.info("Targets on new nodes: %d healthy, %d unhealthy", healthy, unhealthy)
            return healthy > 0 and unhealthy == 0

        return self._await(
            condition, f"healthy targets on nodes launched from {identifier}", ConvergenceTimeoutError
        )
