"""Upgrade core: launch definition resolution, gates, draining and the run itself."""

from .drain import DrainCoordinator, DrainResult
from .gates import ConvergenceGate, HealthGate, RegistrationGate
from .polling import GateState, Waiter
from .resolver import IdentifierResolver, LaunchPlan, derive_launch_name
from .upgrader import FleetUpgrader

__all__ = [
    "ConvergenceGate",
    "DrainCoordinator",
    "DrainResult",
    "FleetUpgrader",
    "GateState",
    "HealthGate",
    "IdentifierResolver",
    "LaunchPlan",
    "RegistrationGate",
    "Waiter",
    "derive_launch_name",
]
