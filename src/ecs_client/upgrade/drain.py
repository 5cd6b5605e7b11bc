"""Draining of nodes still running the previous launch definition."""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

from ..exceptions import GateTimeoutError, MembershipMismatchError, UnsafeDrainError
from ..models import ClusterMember, LaunchIdentifier, MemberStatus, NodeRecord, PollingPolicy
from ..services.autoscaling import FleetService
from ..services.ecs import ClusterService
from .polling import Waiter

logger = logging.getLogger(__name__)


@dataclass
class DrainResult:
    drained: List[str] = field(default_factory=list)
    undrained: List[str] = field(default_factory=list)


def max_drainable(fleet_size: int) -> int:
    """Most nodes one pass may drain: half of the fleet, rounded up."""
    return math.ceil(fleet_size / 2)


def stale_nodes(
    nodes: List[NodeRecord],
    target: LaunchIdentifier,
    previous: Optional[LaunchIdentifier] = None,
) -> List[NodeRecord]:
    stale = [node for node in nodes if node.launch_identifier != target]
    if previous is not None:
        for node in stale:
            if node.launch_identifier != previous:
                logger.warning(
                    "Node %s launched from %s, neither %s nor %s",
                    node.instance_id,
                    node.launch_identifier,
                    previous,
                    target,
                )
    return stale


class DrainCoordinator:
    """Drains stale nodes, never more than half of the fleet at once."""

    def __init__(
        self,
        fleet_service: FleetService,
        cluster_service: ClusterService,
        waiter: Waiter,
        policy: PollingPolicy,
    ):
        self.fleet_service = fleet_service
        self.cluster_service = cluster_service
        self.waiter = waiter
        self.policy = policy

    def drain(
        self,
        fleet_name: str,
        cluster: str,
        target: LaunchIdentifier,
        previous: Optional[LaunchIdentifier] = None,
    ) -> DrainResult:
        nodes = self.fleet_service.list_nodes(fleet_name)
        candidates = stale_nodes(nodes, target, previous)
        limit = max_drainable(len(nodes))
        if len(candidates) > limit:
            raise UnsafeDrainError(
                f"Refusing to drain {len(candidates)} of {len(nodes)} node(s) in {fleet_name}; "
                f"at most {limit} may be drained at once"
            )
        result = DrainResult()
        if not candidates:
            logger.info("No nodes left on a previous launch definition in %s", fleet_name)
            return result

        members = self._resolve_members(cluster, candidates)
        for member in members:
            if member.status == MemberStatus.DRAINING.value:
                logger.info("Container instance %s (%s) already draining", member.arn, member.instance_id)
                continue
            self.cluster_service.set_draining(cluster, member.arn)

        for member in members:
            if self._await_drained(cluster, member):
                result.drained.append(member.instance_id)
            else:
                result.undrained.append(member.instance_id)
        return result

    def _resolve_members(self, cluster: str, candidates: List[NodeRecord]) -> List[ClusterMember]:
        membership = self.cluster_service.membership(cluster)
        members: List[ClusterMember] = []
        missing: List[str] = []
        for node in candidates:
            member = membership.member_for_node(node.instance_id)
            if member is None:
                missing.append(node.instance_id)
            else:
                members.append(member)
        if missing:
            raise MembershipMismatchError(
                f"Node(s) {', '.join(missing)} are not registered with cluster {cluster}; "
                "cannot drain them safely"
            )
        return members

    def _await_drained(self, cluster: str, member: ClusterMember) -> bool:
        def condition() -> bool:
            described = self.cluster_service.describe_members(cluster, [member.arn])
            if not described:
                return True
            running = described[0].running_workloads
            logger.info("%s still runs %d task(s)", member.instance_id, running)
            return running == 0

        try:
            self.waiter.wait_until(condition, self.policy, f"{member.instance_id} to drain")
        except GateTimeoutError as exc:
            logger.warning("Drain incomplete, continuing: %s", exc)
            return False
        logger.info("%s drained", member.instance_id)
        return True
