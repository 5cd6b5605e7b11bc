"""Load balancer target health lookups."""

import logging
from typing import Any, List

from ..exceptions import ProviderError
from ..models import TargetHealthRecord
from .base import AWS_ERRORS, throttle_retry

logger = logging.getLogger(__name__)


class LoadBalancerService:
    """Service class for ELBv2 target groups."""

    def __init__(self, elbv2_client: Any):
        self.elbv2_client = elbv2_client

    @throttle_retry
    def list_target_groups(self) -> List[str]:
        """List every target group ARN in the region."""
        arns: List[str] = []
        try:
            paginator = self.elbv2_client.get_paginator("describe_target_groups")
            for page in paginator.paginate():
                arns.extend(group["TargetGroupArn"] for group in page.get("TargetGroups", []))
        except AWS_ERRORS as exc:
            logger.error("Failed to describe target groups: %s", exc)
            raise ProviderError(f"Failed to describe target groups: {exc}") from exc
        return arns

    @throttle_retry
    def target_health(self, target_group_arn: str) -> List[TargetHealthRecord]:
        """Return the health entries of one target group."""
        try:
            response = self.elbv2_client.describe_target_health(TargetGroupArn=target_group_arn)
        except AWS_ERRORS as exc:
            logger.error("Failed to describe target health for %s: %s", target_group_arn, exc)
            raise ProviderError(
                f"Failed to describe target health for {target_group_arn}: {exc}"
            ) from exc

        return [
            TargetHealthRecord(
                target_group_arn=target_group_arn,
                key=description["Target"]["Id"],
                state=description.get("TargetHealth", {}).get("State", ""),
            )
            for description in response.get("TargetHealthDescriptions", [])
        ]
