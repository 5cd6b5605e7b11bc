"""Launch definition drift detection and versioning."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..exceptions import ProvisioningError
from ..models import ImageCriteria, LaunchIdentifier, LaunchKind
from ..services.autoscaling import FleetService
from ..services.images import ImageRegistry

logger = logging.getLogger(__name__)

UPGRADE_SUFFIX = "-ecsupgrade"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
_PREVIOUS_UPGRADE = re.compile(r"\d{14}" + re.escape(UPGRADE_SUFFIX) + r"$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def derive_launch_name(old_name: str, now: datetime) -> str:
    """Append a timestamped upgrade suffix, replacing one left by an earlier upgrade."""
    base = _PREVIOUS_UPGRADE.sub("", old_name)
    return f"{base}{now.strftime(TIMESTAMP_FORMAT)}{UPGRADE_SUFFIX}"


@dataclass
class LaunchPlan:
    """What the resolver found and what it would create."""
    kind: LaunchKind
    source: LaunchIdentifier
    current_image: Optional[str]
    latest_image: str
    new_name: str
    definition: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def up_to_date(self) -> bool:
        return self.current_image == self.latest_image


class IdentifierResolver:
    """Decides whether the fleet needs a new launch definition and creates it."""

    def __init__(
        self,
        fleet_service: FleetService,
        image_registry: ImageRegistry,
        criteria: ImageCriteria,
        now: Callable[[], datetime] = utc_now,
    ):
        self.fleet_service = fleet_service
        self.image_registry = image_registry
        self.criteria = criteria
        self.now = now

    def plan(self, current: LaunchIdentifier, kind: LaunchKind) -> LaunchPlan:
        """Read the current definition and the latest image. Performs no writes."""
        if current.is_empty:
            raise ProvisioningError("Fleet has no launch configuration or launch template")
        if current.kind != kind:
            raise ProvisioningError(
                f"Fleet launches from {current.kind.value} {current}, "
                f"but {kind.value} mode was requested"
            )

        if kind == LaunchKind.TEMPLATE:
            definition = self.fleet_service.get_launch_template_version(current)
            source = LaunchIdentifier.template(
                definition.get("LaunchTemplateName", current.name), str(definition["VersionNumber"])
            )
            current_image = definition.get("LaunchTemplateData", {}).get("ImageId")
        else:
            definition = self.fleet_service.get_launch_configuration(current.name)
            source = current
            current_image = definition.get("ImageId")

        latest_image = self.image_registry.latest_image_id(self.criteria)
        plan = LaunchPlan(
            kind=kind,
            source=source,
            current_image=current_image,
            latest_image=latest_image,
            new_name=derive_launch_name(source.name, self.now()),
            definition=definition,
        )
        logger.info(
            "Launch definition %s uses image %s; latest approved image is %s",
            source,
            current_image,
            latest_image,
        )
        return plan

    def provision(self, plan: LaunchPlan) -> LaunchIdentifier:
        """Create the new launch definition described by ``plan``."""
        if plan.kind == LaunchKind.TEMPLATE:
            return self.fleet_service.create_launch_template_version(
                plan.definition, plan.new_name, plan.latest_image
            )
        return self.fleet_service.create_launch_configuration(
            plan.definition, plan.new_name, plan.latest_image
        )

    def resolve(self, current: LaunchIdentifier, kind: LaunchKind) -> LaunchIdentifier:
        """Return a new identifier, or ``LaunchIdentifier.EMPTY`` when already current."""
        plan = self.plan(current, kind)
        if plan.up_to_date:
            logger.info("ECS cluster already running latest AMI %s", plan.latest_image)
            return LaunchIdentifier.EMPTY
        return self.provision(plan)
