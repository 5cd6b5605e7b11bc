"""Data models for the ECS fleet upgrade tooling."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LaunchKind(str, Enum):
    """How new fleet nodes are provisioned."""
    CONFIGURATION = "configuration"
    TEMPLATE = "template"


class HealthStatus(str, Enum):
    """Autoscaling health verdicts."""
    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"


IN_SERVICE = "InService"


class MemberStatus(str, Enum):
    """ECS container instance statuses."""
    ACTIVE = "ACTIVE"
    DRAINING = "DRAINING"
    INACTIVE = "INACTIVE"
    REGISTERING = "REGISTERING"
    DEREGISTERING = "DEREGISTERING"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"


class TargetState(str, Enum):
    """Target group health states that matter for convergence."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class UpgradePhase(str, Enum):
    """Phases of one upgrade run, in execution order."""
    RESOLVING = "RESOLVING"
    UP_TO_DATE = "UP_TO_DATE"
    PLANNED = "PLANNED"
    BINDING = "BINDING"
    SCALING_UP = "SCALING_UP"
    AWAITING_HEALTH = "AWAITING_HEALTH"
    AWAITING_REGISTRATION = "AWAITING_REGISTRATION"
    DRAINING = "DRAINING"
    AWAITING_CONVERGENCE = "AWAITING_CONVERGENCE"
    SCALING_DOWN = "SCALING_DOWN"
    RETIRING = "RETIRING"
    COMPLETE = "COMPLETE"


@dataclass(frozen=True)
class LaunchIdentifier:
    """Reference to a launch configuration or a launch template version.

    An empty identifier (``LaunchIdentifier.EMPTY``) means "no change".
    """
    kind: Optional[LaunchKind] = None
    name: str = ""
    version: Optional[str] = None

    EMPTY: ClassVar["LaunchIdentifier"]

    @classmethod
    def configuration(cls, name: str) -> "LaunchIdentifier":
        return cls(kind=LaunchKind.CONFIGURATION, name=name)

    @classmethod
    def template(cls, name: str, version: str) -> "LaunchIdentifier":
        return cls(kind=LaunchKind.TEMPLATE, name=name, version=str(version))

    @property
    def is_empty(self) -> bool:
        return self.kind is None or not self.name

    def __str__(self) -> str:
        if self.is_empty:
            return "<none>"
        if self.kind == LaunchKind.TEMPLATE:
            return f"{self.name}:{self.version}"
        return self.name


LaunchIdentifier.EMPTY = LaunchIdentifier()


@dataclass(frozen=True)
class FleetDescriptor:
    """Autoscaling group baseline captured at the start of a run."""
    name: str
    desired_capacity: int
    min_size: int
    max_size: int
    launch_identifier: LaunchIdentifier


@dataclass
class NodeRecord:
    """An instance that belongs to the fleet."""
    instance_id: str
    launch_identifier: LaunchIdentifier
    health_status: str = HealthStatus.HEALTHY.value
    lifecycle_state: Optional[str] = None
    private_ips: List[str] = field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        # DescribeAutoScalingInstances reports HEALTHY, DescribeAutoScalingGroups Healthy.
        return (self.health_status or "").lower() == HealthStatus.HEALTHY.value.lower()

    @property
    def is_in_service(self) -> bool:
        # Pending instances already report HEALTHY.
        return self.lifecycle_state == IN_SERVICE


@dataclass(frozen=True)
class ClusterMember:
    """An ECS container instance."""
    arn: str
    instance_id: str
    running_workloads: int = 0
    status: str = MemberStatus.ACTIVE.value

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE.value


@dataclass
class ClusterMembership:
    """Node id <-> container instance correlation for one cluster snapshot."""
    cluster: str
    by_node: Dict[str, ClusterMember] = field(default_factory=dict)
    by_member: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_members(cls, cluster: str, members: List[ClusterMember]) -> "ClusterMembership":
        membership = cls(cluster=cluster)
        for member in members:
            membership.by_node[member.instance_id] = member
            membership.by_member[member.arn] = member.instance_id
        return membership

    def member_for_node(self, instance_id: str) -> Optional[ClusterMember]:
        return self.by_node.get(instance_id)

    def node_for_member(self, member_arn: str) -> Optional[str]:
        return self.by_member.get(member_arn)

    @property
    def members(self) -> List[ClusterMember]:
        return list(self.by_node.values())

    def __len__(self) -> int:
        return len(self.by_node)


@dataclass(frozen=True)
class TargetHealthRecord:
    """One target-group entry: a key (instance id or IP) and its health state."""
    target_group_arn: str
    key: str
    state: str


@dataclass
class UpgradeReport:
    """Outcome of a single upgrade run."""
    fleet_name: str
    cluster_name: str
    phase: UpgradePhase = UpgradePhase.RESOLVING
    old_identifier: LaunchIdentifier = LaunchIdentifier.EMPTY
    new_identifier: LaunchIdentifier = LaunchIdentifier.EMPTY
    baseline_desired: Optional[int] = None
    drained_members: List[str] = field(default_factory=list)
    undrained_members: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.phase in {
            UpgradePhase.COMPLETE,
            UpgradePhase.UP_TO_DATE,
            UpgradePhase.PLANNED,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None


class AWSConfig(BaseModel):
    """AWS session settings with validation."""
    model_config = ConfigDict(validate_assignment=True)

    region: Optional[str] = None
    profile_name: Optional[str] = None
    max_attempts: int = Field(default=5, ge=1)

    def session_kwargs(self) -> Dict[str, str]:
        kwargs: Dict[str, str] = {}
        if self.region:
            kwargs["region_name"] = self.region
        if self.profile_name:
            kwargs["profile_name"] = self.profile_name
        return kwargs


class ImageCriteria(BaseModel):
    """Filter used to find the latest approved node image."""
    owners: List[str] = Field(default_factory=lambda: ["591542846629"])
    name_pattern: str = "amzn-ami-*-amazon-ecs-optimized"
    virtualization_type: str = "hvm"

    def filters(self) -> List[Dict[str, object]]:
        return [
            {"Name": "name", "Values": [self.name_pattern]},
            {"Name": "virtualization-type", "Values": [self.virtualization_type]},
        ]


class PollingPolicy(BaseModel):
    """Fixed interval polling bounded by ``max_attempts * interval`` seconds."""
    interval: float = Field(default=30.0, ge=0)
    max_attempts: int = Field(default=25, ge=1)

    @property
    def timeout(self) -> float:
        return self.interval * self.max_attempts


class UpgradeConfig(BaseModel):
    """Settings for one fleet upgrade run."""
    model_config = ConfigDict(validate_assignment=True)

    fleet_name: str
    cluster_name: str
    use_launch_template: bool = False
    dry_run: bool = False
    aws: AWSConfig = Field(default_factory=AWSConfig)
    image: ImageCriteria = Field(default_factory=ImageCriteria)
    health_policy: PollingPolicy = Field(default_factory=PollingPolicy)
    registration_policy: PollingPolicy = Field(default_factory=PollingPolicy)
    drain_policy: PollingPolicy = Field(default_factory=PollingPolicy)
    convergence_policy: PollingPolicy = Field(default_factory=PollingPolicy)

    @property
    def launch_kind(self) -> LaunchKind:
        return LaunchKind.TEMPLATE if self.use_launch_template else LaunchKind.CONFIGURATION
