"""
Error taxonomy shared by the discovery, collection and orchestration layers.
"""


class TimeTrackerError(Exception):
    """Base class for all errors raised by the activity engine."""


class SourceUnavailable(TimeTrackerError):
    """
    A single repository (or a single API source) could not be read.

    Collectors catch this and record it against the handle; it never aborts a run.
    """

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class MalformedRecord(TimeTrackerError):
    """One parsed line or JSON fragment did not have the expected shape."""


class DiscoveryFailure(TimeTrackerError):
    """Every repository discovery mechanism failed."""


class FatalConfiguration(TimeTrackerError):
    """The run cannot start at all (no token, no resolvable identity, bad settings)."""


__all__ = ["TimeTrackerError", "SourceUnavailable", "MalformedRecord", "DiscoveryFailure", "FatalConfiguration"]
