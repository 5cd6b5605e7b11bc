"""AWS services package."""

from .autoscaling import FleetService
from .ecs import ClusterService
from .elbv2 import LoadBalancerService
from .images import ImageRegistry

__all__ = ["FleetService", "ImageRegistry", "ClusterService", "LoadBalancerService"]
