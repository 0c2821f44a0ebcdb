"""
Error taxonomy for an ingestion run.

Every error here is fatal for the run: nothing is retried and nothing is
downgraded to a per-outage skip. Recovery is a rerun, which resumes from the
last committed checkpoint.
"""


class OutageTrackerError(Exception):
    """Base class for all run-aborting errors."""
    pass


class ContinuityError(OutageTrackerError):
    """The checkpoint revision was not found in the walked history."""
    pass


class DecodeError(OutageTrackerError):
    """Snapshot bytes or an encoded geometry could not be decoded."""
    pass


class EnrichmentError(OutageTrackerError):
    """The place lookup failed."""
    pass


class PersistenceError(OutageTrackerError):
    """A store constraint was violated or the store failed."""
    pass
