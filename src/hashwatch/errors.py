"""Error taxonomy for the tracker.

Validation failures are also ValueErrors.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all tracker errors."""


class MalformedPayloadError(TrackerError, ValueError):
    """Payload is shorter than the 32-byte digest prefix, or not valid hex."""


class InvalidServiceIdError(TrackerError, ValueError):
    """Service id is not 1-8 hex characters (optionally 0x-prefixed)."""


class ServiceNotFoundError(TrackerError, LookupError):
    """Service id could not be resolved by the discovery collaborator."""


class SubmissionError(TrackerError):
    """The submission collaborator could not be reached."""


class DiscoveryError(TrackerError):
    """The discovery collaborator could not be reached."""
