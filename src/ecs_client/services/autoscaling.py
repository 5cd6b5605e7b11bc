"""Autoscaling group (fleet) operations."""

import logging
from typing import Any, Dict, List, Mapping, Optional

from ..exceptions import ProviderError, ProvisioningError
from ..models import FleetDescriptor, LaunchIdentifier, LaunchKind, NodeRecord
from .base import AWS_ERRORS, chunked, error_code, throttle_retry

logger = logging.getLogger(__name__)

# DescribeAutoScalingInstances rejects more than 50 instance ids per call.
AUTOSCALING_INSTANCE_BATCH = 50
EC2_INSTANCE_BATCH = 100
INSTANCE_NOT_FOUND = "InvalidInstanceID.NotFound"

# Fields accepted by CreateLaunchConfiguration that can be copied verbatim from
# a DescribeLaunchConfigurations entry.
LAUNCH_CONFIGURATION_FIELDS = (
    "AssociatePublicIpAddress",
    "BlockDeviceMappings",
    "ClassicLinkVPCId",
    "ClassicLinkVPCSecurityGroups",
    "EbsOptimized",
    "IamInstanceProfile",
    "InstanceMonitoring",
    "InstanceType",
    "KernelId",
    "KeyName",
    "MetadataOptions",
    "PlacementTenancy",
    "RamdiskId",
    "SecurityGroups",
    "SpotPrice",
    "UserData",
)


def launch_identifier_from(data: Mapping[str, Any]) -> LaunchIdentifier:
    """Build a LaunchIdentifier from an autoscaling group or instance description."""
    config_name = data.get("LaunchConfigurationName")
    if config_name:
        return LaunchIdentifier.configuration(config_name)

    template = data.get("LaunchTemplate")
    if not template:
        mixed = data.get("MixedInstancesPolicy") or {}
        template = (mixed.get("LaunchTemplate") or {}).get("LaunchTemplateSpecification")
    if template and template.get("LaunchTemplateName"):
        return LaunchIdentifier.template(
            template["LaunchTemplateName"], template.get("Version") or "$Default"
        )
    return LaunchIdentifier.EMPTY


def clone_launch_configuration(
    source: Mapping[str, Any], name: str, image_id: str
) -> Dict[str, Any]:
    """Return CreateLaunchConfiguration arguments copied from ``source`` with a new image."""
    params: Dict[str, Any] = {}
    for key in LAUNCH_CONFIGURATION_FIELDS:
        value = source.get(key)
        # Describe returns empty strings for unset kernel/ramdisk ids; Create rejects them.
        if value is None or value == "":
            continue
        params[key] = value
    params["LaunchConfigurationName"] = name
    params["ImageId"] = image_id
    return params


class FleetService:
    """Service class for autoscaling group operations."""

    def __init__(self, autoscaling_client: Any, ec2_client: Any):
        """Initialize fleet service."""
        self.autoscaling_client = autoscaling_client
        self.ec2_client = ec2_client

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @throttle_retry
    def _describe_group(self, fleet_name: str) -> Dict[str, Any]:
        try:
            response = self.autoscaling_client.describe_auto_scaling_groups(
                AutoScalingGroupNames=[fleet_name]
            )
        except AWS_ERRORS as exc:
            logger.error("Failed to describe autoscaling group %s: %s", fleet_name, exc)
            raise ProviderError(f"Failed to describe autoscaling group {fleet_name}: {exc}") from exc

        groups = response.get("AutoScalingGroups", [])
        if not groups:
            raise ProviderError(f"Autoscaling group {fleet_name} not found")
        return groups[0]

    def describe_fleet(self, fleet_name: str) -> FleetDescriptor:
        """Capture the fleet baseline: capacity and launch definition."""
        group = self._describe_group(fleet_name)
        fleet = FleetDescriptor(
            name=fleet_name,
            desired_capacity=int(group.get("DesiredCapacity", 0)),
            min_size=int(group.get("MinSize", 0)),
            max_size=int(group.get("MaxSize", 0)),
            launch_identifier=launch_identifier_from(group),
        )
        logger.debug("Fleet %s: %s", fleet_name, fleet)
        return fleet

    def list_nodes(self, fleet_name: str) -> List[NodeRecord]:
        """List fleet instances with their launch identifier, health and lifecycle state.

        Private IPs are left empty; resolve them with ``private_addresses``.
        """
        group = self._describe_group(fleet_name)
        instance_ids = [
            instance["InstanceId"] for instance in group.get("Instances", []) if instance.get("InstanceId")
        ]
        if not instance_ids:
            return []

        nodes: List[NodeRecord] = []
        for batch in chunked(instance_ids, AUTOSCALING_INSTANCE_BATCH):
            for detail in self._describe_autoscaling_instances(batch):
                nodes.append(
                    NodeRecord(
                        instance_id=detail["InstanceId"],
                        launch_identifier=launch_identifier_from(detail),
                        health_status=detail.get("HealthStatus", ""),
                        lifecycle_state=detail.get("LifecycleState"),
                    )
                )
        return nodes

    @throttle_retry
    def _describe_autoscaling_instances(self, instance_ids: List[str]) -> List[Dict[str, Any]]:
        details: List[Dict[str, Any]] = []
        try:
            paginator = self.autoscaling_client.get_paginator("describe_auto_scaling_instances")
            for page in paginator.paginate(InstanceIds=instance_ids):
                details.extend(page.get("AutoScalingInstances", []))
        except AWS_ERRORS as exc:
            logger.error("Failed to describe autoscaling instances: %s", exc)
            raise ProviderError(f"Failed to describe autoscaling instances: {exc}") from exc
        return details

    @throttle_retry
    def private_addresses(self, instance_ids: List[str]) -> Dict[str, List[str]]:
        """Map instance ids to every private IPv4 address attached to them.

        Instances EC2 does not know yet (fresh from a scale-up) are left out
        of the result instead of failing the whole lookup.
        """
        addresses: Dict[str, List[str]] = {}
        if not instance_ids:
            return addresses
        paginator = self.ec2_client.get_paginator("describe_instances")
        for batch in chunked(instance_ids, EC2_INSTANCE_BATCH):
            try:
                for page in paginator.paginate(InstanceIds=batch):
                    for reservation in page.get("Reservations", []):
                        for instance in reservation.get("Instances", []):
                            addresses[instance["InstanceId"]] = _instance_ips(instance)
            except AWS_ERRORS as exc:
                if error_code(exc) == INSTANCE_NOT_FOUND:
                    logger.warning("EC2 has not indexed every instance in %s yet: %s", batch, exc)
                    continue
                logger.error("Failed to describe EC2 instances: %s", exc)
                raise ProviderError(f"Failed to describe EC2 instances: {exc}") from exc
        return addresses

    @throttle_retry
    def get_launch_configuration(self, name: str) -> Dict[str, Any]:
        """Fetch a launch configuration by exact name."""
        try:
            response = self.autoscaling_client.describe_launch_configurations(
                LaunchConfigurationNames=[name]
            )
        except AWS_ERRORS as exc:
            logger.error("Failed to describe launch configuration %s: %s", name, exc)
            raise ProviderError(f"Failed to describe launch configuration {name}: {exc}") from exc

        configurations = response.get("LaunchConfigurations", [])
        if not configurations:
            raise ProvisioningError(f"Launch configuration {name} not found")
        logger.debug("Found launch configuration: %s", configurations[0].get("LaunchConfigurationName"))
        return configurations[0]

    @throttle_retry
    def get_launch_template_version(self, identifier: LaunchIdentifier) -> Dict[str, Any]:
        """Fetch one launch template version; ``$Latest``/``$Default`` are resolved by EC2."""
        try:
            response = self.ec2_client.describe_launch_template_versions(
                LaunchTemplateName=identifier.name,
                Versions=[identifier.version or "$Default"],
            )
        except AWS_ERRORS as exc:
            logger.error("Failed to describe launch template %s: %s", identifier, exc)
            raise ProviderError(f"Failed to describe launch template {identifier}: {exc}") from exc

        versions = response.get("LaunchTemplateVersions", [])
        if not versions:
            raise ProvisioningError(f"Launch template version {identifier} not found")
        return versions[0]

    # ------------------------------------------------------------------
    # Writes (never retried)
    # ------------------------------------------------------------------
    def create_launch_configuration(
        self, source: Mapping[str, Any], name: str, image_id: str
    ) -> LaunchIdentifier:
        """Clone ``source`` under ``name`` with ``image_id`` swapped in."""
        params = clone_launch_configuration(source, name, image_id)
        logger.debug("CreateLaunchConfiguration with: %s", params)
        try:
            self.autoscaling_client.create_launch_configuration(**params)
        except AWS_ERRORS as exc:
            logger.error("Failed to create launch configuration %s: %s", name, exc)
            raise ProvisioningError(f"Failed to create launch configuration {name}: {exc}") from exc
        logger.info("Created launch configuration %s (image %s)", name, image_id)
        return LaunchIdentifier.configuration(name)

    def create_launch_template_version(
        self, source: Mapping[str, Any], description: str, image_id: str
    ) -> LaunchIdentifier:
        """Add a template version derived from ``source`` and make it the default."""
        template_name = source["LaunchTemplateName"]
        source_version = str(source["VersionNumber"])
        try:
            response = self.ec2_client.create_launch_template_version(
                LaunchTemplateName=template_name,
                SourceVersion=source_version,
                VersionDescription=description,
                LaunchTemplateData={"ImageId": image_id},
            )
            new_version = str(response["LaunchTemplateVersion"]["VersionNumber"])
            self.ec2_client.modify_launch_template(
                LaunchTemplateName=template_name, DefaultVersion=new_version
            )
        except AWS_ERRORS as exc:
            logger.error(
                "Failed to create version of launch template %s from %s: %s",
                template_name,
                source_version,
                exc,
            )
            raise ProvisioningError(
                f"Failed to create launch template version for {template_name}: {exc}"
            ) from exc
        logger.info(
            "Created launch template version %s:%s (%s, image %s)",
            template_name,
            new_version,
            description,
            image_id,
        )
        return LaunchIdentifier.template(template_name, new_version)

    def bind_launch_identifier(self, fleet_name: str, identifier: LaunchIdentifier) -> None:
        """Point the autoscaling group at ``identifier`` for future launches."""
        params: Dict[str, Any] = {"AutoScalingGroupName": fleet_name}
        if identifier.kind == LaunchKind.TEMPLATE:
            params["LaunchTemplate"] = {
                "LaunchTemplateName": identifier.name,
                "Version": identifier.version,
            }
        else:
            params["LaunchConfigurationName"] = identifier.name
        self._update_group(params, f"bind {fleet_name} to {identifier}")
        logger.info("Autoscaling group %s now launches from %s", fleet_name, identifier)

    def set_desired_capacity(
        self, fleet_name: str, desired: int, max_size: Optional[int] = None
    ) -> None:
        """Set the desired capacity, optionally moving the max size with it."""
        params: Dict[str, Any] = {"AutoScalingGroupName": fleet_name, "DesiredCapacity": desired}
        if max_size is not None:
            params["MaxSize"] = max_size
        self._update_group(params, f"scale {fleet_name} to {desired}")
        logger.info("Autoscaling group %s desired capacity set to %d", fleet_name, desired)

    def delete_launch_definition(self, identifier: LaunchIdentifier) -> None:
        """Delete a launch configuration or a single launch template version."""
        try:
            if identifier.kind == LaunchKind.TEMPLATE:
                response = self.ec2_client.delete_launch_template_versions(
                    LaunchTemplateName=identifier.name, Versions=[identifier.version]
                )
                failures = response.get("UnsuccessfullyDeletedLaunchTemplateVersions", [])
                if failures:
                    reasons = ", ".join(
                        str(item.get("ResponseError", {}).get("Message", "unknown error"))
                        for item in failures
                    )
                    raise ProviderError(f"Failed to delete launch template version {identifier}: {reasons}")
            else:
                self.autoscaling_client.delete_launch_configuration(
                    LaunchConfigurationName=identifier.name
                )
        except AWS_ERRORS as exc:
            logger.error("Failed to delete launch definition %s: %s", identifier, exc)
            raise ProviderError(f"Failed to delete launch definition {identifier}: {exc}") from exc
        logger.info("Deleted launch definition %s", identifier)

    def _update_group(self, params: Dict[str, Any], action: str) -> None:
        try:
            self.autoscaling_client.update_auto_scaling_group(**params)
        except AWS_ERRORS as exc:
            logger.error("Failed to %s: %s", action, exc)
            raise ProviderError(f"Failed to {action}: {exc}") from exc


def _instance_ips(instance: Mapping[str, Any]) -> List[str]:
    ips: List[str] = []
    primary = instance.get("PrivateIpAddress")
    if primary:
        ips.append(primary)
    for interface in instance.get("NetworkInterfaces", []):
        for address in interface.get("PrivateIpAddresses", []):
            ip = address.get("PrivateIpAddress")
            if ip and ip not in ips:
                ips.append(ip)
    return ips
