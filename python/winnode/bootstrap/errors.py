"""
winnode/bootstrap/errors.py

Exception types raised by the bootstrap steps. Each one is fatal for the
reconcile that raised it; the daemon logs it and moves on to the next Machine.
"""


class BootstrapError(Exception):
    """Base class for failures while turning a Machine into a worker Node."""


class UserDataError(BootstrapError):
    """The user data secret could not be rendered or created."""


class RemoteConfigurationError(BootstrapError):
    """The remote configuration of the Windows instance failed."""


class CSRNotFoundError(BootstrapError):
    """No pending CSR matched the requestor filter within the retry budget."""


class CSRApprovalError(BootstrapError):
    """Submitting the approval for a CSR failed."""


class NodeNotFoundError(BootstrapError):
    """No Windows Node carries the instance id of the Machine."""


class HostSubnetNotFoundError(BootstrapError):
    """The Node never received its hybrid-overlay host subnet annotation."""


class CNIConfigError(BootstrapError):
    """The CNI configuration document could not be read, patched or written."""


class ClusterNetworkError(BootstrapError):
    """The cluster network configuration could not be read."""


class CloudResourceError(BootstrapError):
    """A cloud resource needed for Windows instances could not be resolved."""


class NodeUpdateError(BootstrapError):
    """The worker label could not be applied to the Node."""
