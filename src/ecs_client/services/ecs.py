"""ECS cluster (orchestrator) operations."""

import logging
from typing import Any, Dict, List, Mapping

from ..exceptions import ProviderError
from ..models import ClusterMember, ClusterMembership, MemberStatus
from .base import AWS_ERRORS, chunked, throttle_retry

logger = logging.getLogger(__name__)

# DescribeContainerInstances and DescribeTasks accept at most 100 ARNs.
ECS_DESCRIBE_BATCH = 100


class ClusterService:
    """Service class for ECS container instance and task operations."""

    def __init__(self, ecs_client: Any):
        self.ecs_client = ecs_client

    @throttle_retry
    def list_members(self, cluster: str) -> List[str]:
        """List container instance ARNs registered with ``cluster``."""
        arns: List[str] = []
        try:
            paginator = self.ecs_client.get_paginator("list_container_instances")
            for page in paginator.paginate(cluster=cluster):
                arns.extend(page.get("containerInstanceArns", []))
        except AWS_ERRORS as exc:
            logger.error("Failed to list container instances for %s: %s", cluster, exc)
            raise ProviderError(f"Failed to list container instances for {cluster}: {exc}") from exc
        return arns

    @throttle_retry
    def describe_members(self, cluster: str, member_arns: List[str]) -> List[ClusterMember]:
        """Describe container instances: EC2 id, running task count and status."""
        members: List[ClusterMember] = []
        try:
            for batch in chunked(member_arns, ECS_DESCRIBE_BATCH):
                response = self.ecs_client.describe_container_instances(
                    cluster=cluster, containerInstances=batch
                )
                for failure in response.get("failures", []):
                    logger.warning(
                        "Could not describe container instance %s: %s",
                        failure.get("arn"),
                        failure.get("reason"),
                    )
                for item in response.get("containerInstances", []):
                    members.append(
                        ClusterMember(
                            arn=item["containerInstanceArn"],
                            instance_id=item.get("ec2InstanceId", ""),
                            running_workloads=int(item.get("runningTasksCount", 0)),
                            status=item.get("status", ""),
                        )
                    )
        except AWS_ERRORS as exc:
            logger.error("Failed to describe container instances for %s: %s", cluster, exc)
            raise ProviderError(f"Failed to describe container instances for {cluster}: {exc}") from exc
        return members

    def membership(self, cluster: str) -> ClusterMembership:
        """Snapshot the node id <-> container instance correlation."""
        arns = self.list_members(cluster)
        members = self.describe_members(cluster, arns) if arns else []
        logger.debug("Cluster %s has %d member(s)", cluster, len(members))
        return ClusterMembership.from_members(cluster, members)

    def set_draining(self, cluster: str, member_arn: str) -> None:
        """Mark a container instance DRAINING."""
        try:
            response = self.ecs_client.update_container_instances_state(
                cluster=cluster,
                containerInstances=[member_arn],
                status=MemberStatus.DRAINING.value,
            )
        except AWS_ERRORS as exc:
            logger.error("Failed to drain %s in %s: %s", member_arn, cluster, exc)
            raise ProviderError(f"Failed to drain {member_arn}: {exc}") from exc
        failures = response.get("failures", [])
        if failures:
            raise ProviderError(
                f"Failed to drain {member_arn}: {failures[0].get('reason', 'unknown reason')}"
            )
        logger.info("Draining container instance %s", member_arn)

    @throttle_retry
    def list_running_workloads(self, cluster: str) -> List[str]:
        """List ARNs of tasks currently running in ``cluster``."""
        arns: List[str] = []
        try:
            paginator = self.ecs_client.get_paginator("list_tasks")
            for page in paginator.paginate(cluster=cluster, desiredStatus="RUNNING"):
                arns.extend(page.get("taskArns", []))
        except AWS_ERRORS as exc:
            logger.error("Failed to list tasks for %s: %s", cluster, exc)
            raise ProviderError(f"Failed to list tasks for {cluster}: {exc}") from exc
        return arns

    @throttle_retry
    def workload_network_addresses(
        self, cluster: str, task_arns: List[str]
    ) -> Dict[str, List[str]]:
        """Map container instance ARNs to the private IPs of tasks placed on them.

        Only tasks with their own network interface (awsvpc) carry addresses.
        """
        addresses: Dict[str, List[str]] = {}
        try:
            for batch in chunked(task_arns, ECS_DESCRIBE_BATCH):
                response = self.ecs_client.describe_tasks(cluster=cluster, tasks=batch)
                for task in response.get("tasks", []):
                    member_arn = task.get("containerInstanceArn")
                    if not member_arn:
                        continue
                    bucket = addresses.setdefault(member_arn, [])
                    for ip in _task_ips(task):
                        if ip not in bucket:
                            bucket.append(ip)
        except AWS_ERRORS as exc:
            logger.error("Failed to describe tasks for %s: %s", cluster, exc)
            raise ProviderError(f"Failed to describe tasks for {cluster}: {exc}") from exc
        return addresses


def _task_ips(task: Mapping[str, Any]) -> List[str]:
    ips: List[str] = []
    for attachment in task.get("attachments", []):
        if attachment.get("type") != "ElasticNetworkInterface":
            continue
        for detail in attachment.get("details", []):
            if detail.get("name") == "privateIPv4Address" and detail.get("value"):
                ips.append(detail["value"])
    for container in task.get("containers", []):
        for interface in container.get("networkInterfaces", []):
            ip = interface.get("privateIpv4Address")
            if ip and ip not in ips:
                ips.append(ip)
    return ips
