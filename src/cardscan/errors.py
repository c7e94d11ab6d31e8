"""Error taxonomy for the capture pipeline.

Every error below is caught at the capture-cycle boundary by
:class:`cardscan.scheduler.CaptureScheduler` and translated into its status
projection; none of them is meant to escape to the caller.
"""


class CardScanError(Exception):
    """Base class for capture pipeline errors."""

    retryable = True


class PermissionDenied(CardScanError):
    """Camera access was refused. Recoverable by granting access."""


class DependencyUnavailable(CardScanError):
    """The text recognizer cannot run at all (e.g. OCR engine not installed).

    Fatal for the scanning session: the loop stops and rescans are disabled.
    """

    retryable = False


class CaptureFailure(CardScanError):
    """A single capture or recognition call failed. Retried on the next tick."""
