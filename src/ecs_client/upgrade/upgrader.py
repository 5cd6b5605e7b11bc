"""Rolling replacement of an ECS fleet onto the latest approved image."""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from ..client import AWSClient
from ..exceptions import UpgradeError
from ..models import UpgradeConfig, UpgradePhase, UpgradeReport
from ..services.autoscaling import FleetService
from ..services.ecs import ClusterService
from ..services.elbv2 import LoadBalancerService
from ..services.images import ImageRegistry
from .drain import DrainCoordinator
from .gates import ConvergenceGate, HealthGate, RegistrationGate
from .polling import Waiter
from .resolver import IdentifierResolver, utc_now

logger = logging.getLogger(__name__)

FINISHED_PHASES = frozenset({UpgradePhase.UP_TO_DATE, UpgradePhase.PLANNED, UpgradePhase.COMPLETE})


class FleetUpgrader:
    """Drives one upgrade run through every phase, in order.

    Phases: resolve -> bind -> scale up -> health -> registration -> drain ->
    convergence -> scale down -> retire. Any error stops the run where it is;
    nothing is rolled back.
    """

    def __init__(
        self,
        config: UpgradeConfig,
        fleet_service: FleetService,
        image_registry: ImageRegistry,
        cluster_service: ClusterService,
        lb_service: LoadBalancerService,
        waiter: Optional[Waiter] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.fleet_service = fleet_service
        self.now = now
        waiter = waiter or Waiter()
        self.waiter = waiter

        self.resolver = IdentifierResolver(fleet_service, image_registry, config.image, now=now)
        self.health_gate = HealthGate(fleet_service, waiter, config.health_policy)
        self.registration_gate = RegistrationGate(cluster_service, waiter, config.registration_policy)
        self.drain_coordinator = DrainCoordinator(
            fleet_service, cluster_service, waiter, config.drain_policy
        )
        self.convergence_gate = ConvergenceGate(
            fleet_service, cluster_service, lb_service, waiter, config.convergence_policy
        )
        self.report = UpgradeReport(fleet_name=config.fleet_name, cluster_name=config.cluster_name)

    @classmethod
    def from_client(
        cls,
        config: UpgradeConfig,
        client: AWSClient,
        cancel_event: Optional[threading.Event] = None,
    ) -> "FleetUpgrader":
        return cls(
            config,
            fleet_service=client.fleet_service(),
            image_registry=client.image_registry(),
            cluster_service=client.cluster_service(),
            lb_service=client.load_balancer_service(),
            waiter=Waiter(cancel_event=cancel_event),
        )

    def run(self) -> UpgradeReport:
        """Execute the upgrade. Raises ``UpgradeError`` subclasses on failure."""
        self.report = UpgradeReport(
            fleet_name=self.config.fleet_name,
            cluster_name=self.config.cluster_name,
            started_at=self.now(),
        )
        try:
            self._run()
        except UpgradeError as exc:
            self.report.error = str(exc)
            logger.error(
                "Upgrade of %s stopped during %s: %s",
                self.config.fleet_name,
                self.report.phase.value,
                exc,
            )
            raise
        finally:
            self.report.finished_at = self.now()
        return self.report

    def _enter(self, phase: UpgradePhase) -> None:
        if phase not in FINISHED_PHASES:
            self.waiter.check_cancelled(f"before {phase.value}")
        self.report.phase = phase
        logger.info("[%s] %s", self.config.fleet_name, phase.value)

    def _run(self) -> None:
        config = self.config
        report = self.report

        self._enter(UpgradePhase.RESOLVING)
        fleet = self.fleet_service.describe_fleet(config.fleet_name)
        report.old_identifier = fleet.launch_identifier
        report.baseline_desired = fleet.desired_capacity

        plan = self.resolver.plan(fleet.launch_identifier, config.launch_kind)
        if plan.up_to_date:
            logger.info("ECS cluster already running latest AMI %s", plan.latest_image)
            self._enter(UpgradePhase.UP_TO_DATE)
            return
        if config.dry_run:
            logger.info(
                "DRY RUN: would replace %s (image %s) with %s (image %s) and roll %d node(s)",
                plan.source,
                plan.current_image,
                plan.new_name,
                plan.latest_image,
                fleet.desired_capacity,
            )
            self._enter(UpgradePhase.PLANNED)
            return

        new_identifier = self.resolver.provision(plan)
        report.new_identifier = new_identifier

        self._enter(UpgradePhase.BINDING)
        self.fleet_service.bind_launch_identifier(fleet.name, new_identifier)

        self._enter(UpgradePhase.SCALING_UP)
        doubled = fleet.desired_capacity * 2
        raise_max = fleet.max_size < doubled
        self.fleet_service.set_desired_capacity(
            fleet.name, doubled, max_size=doubled if raise_max else None
        )

        self._enter(UpgradePhase.AWAITING_HEALTH)
        self.health_gate.wait(fleet, new_identifier)

        self._enter(UpgradePhase.AWAITING_REGISTRATION)
        self.registration_gate.wait(config.cluster_name, doubled)

        self._enter(UpgradePhase.DRAINING)
        drained = self.drain_coordinator.drain(
            fleet.name, config.cluster_name, new_identifier, previous=fleet.launch_identifier
        )
        report.drained_members = drained.drained
        report.undrained_members = drained.undrained

        self._enter(UpgradePhase.AWAITING_CONVERGENCE)
        self.convergence_gate.wait(fleet.name, config.cluster_name, new_identifier)

        self._enter(UpgradePhase.SCALING_DOWN)
        self.fleet_service.set_desired_capacity(
            fleet.name, fleet.desired_capacity, max_size=fleet.max_size if raise_max else None
        )

        self._enter(UpgradePhase.RETIRING)
        self.fleet_service.delete_launch_definition(plan.source)

        self._enter(UpgradePhase.COMPLETE)
