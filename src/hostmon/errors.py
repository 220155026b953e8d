"""Exception hierarchy for hostmon."""


class HostmonError(Exception):
    """Base class for all hostmon errors."""


class ProbeError(HostmonError):
    """An OS-level reading failed or timed out."""


class StoreError(HostmonError):
    """The time-series store could not be initialized, written or read."""


class ValidationError(HostmonError):
    """Request parameters or configuration values are malformed."""


class ProbeTimeoutError(ProbeError):
    """A probe did not answer within its timeout and may still be running."""
