"""Errors raised while upgrading an ECS fleet.

Every error is terminal for the run. The CLI prints it and exits non-zero.
"""


class UpgradeError(Exception):
    """Base class for all upgrade failures."""


class ProvisioningError(UpgradeError):
    """A new launch definition could not be created."""


class ImageNotFoundError(UpgradeError):
    """No image matched the approved image criteria."""


class ProviderError(UpgradeError):
    """AWS rejected a describe, scale, bind or delete call."""


class UnsafeDrainError(UpgradeError):
    """Draining the stale nodes would take out more than half of the fleet."""


class MembershipMismatchError(UpgradeError):
    """A node scheduled for draining is not registered with the cluster."""


class GateTimeoutError(UpgradeError):
    """A polling gate ran out of time before its condition held."""


class HealthTimeoutError(GateTimeoutError):
    """New nodes did not become healthy in time."""


class RegistrationTimeoutError(GateTimeoutError):
    """New nodes did not join the cluster in time."""


class ConvergenceTimeoutError(GateTimeoutError):
    """Target groups did not report the new nodes healthy in time."""


class UpgradeCancelledError(UpgradeError):
    """The run was interrupted while waiting."""
