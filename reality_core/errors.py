"""
Error taxonomy for tree generation.

Configuration and source-data errors are raised before any work starts and
are never retried. ``TransientIOError`` is the only condition the
orchestrator retries.
"""


class RealityMapError(Exception):
    """Base class for all engine errors."""


class NoSourceData(RealityMapError):
    """The extract contains no transitions, so there is nothing to branch on."""


class InvalidConfiguration(RealityMapError, ValueError):
    """A generation parameter or extract field is out of range or malformed."""


class GenerationTimeout(RealityMapError):
    """The tree exceeded its node-count or wall-time budget."""


class GenerationCancelled(RealityMapError):
    """Expansion was stopped through the cancel event."""


class GenerationInProgress(RealityMapError):
    """Another generation is already running for the same map."""


class NarrativeUnavailable(RealityMapError):
    """The narrative writer failed; the subject is published without a summary."""


class TransientIOError(RealityMapError):
    """Fetching the extract or publishing a snapshot failed in a retryable way."""


class MapNotFound(RealityMapError):
    """No state is recorded for the requested map."""
