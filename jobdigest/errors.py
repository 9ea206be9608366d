from __future__ import annotations

from typing import Optional


class JobDigestError(Exception):
    """Base class for pipeline errors."""


class AlreadyInFlight(JobDigestError):
    """
    A run of this kind is already queued or active. Not a failure: callers
    treat it as backpressure and skip the trigger.
    """

    def __init__(self, kind: str, existing_run_id: Optional[str] = None):
        self.kind = kind
        self.existing_run_id = existing_run_id
        super().__init__(f"{kind} already in queue or running (run {existing_run_id})")


class PerEmailFailure(JobDigestError):
    """Processing of a single email failed; the run carries on."""

    def __init__(self, message_id: str, cause: BaseException):
        self.message_id = message_id
        self.cause = cause
        super().__init__(f"email {message_id}: {type(cause).__name__}: {cause}")


class RunFailure(JobDigestError):
    """A run aborted outside the per-email boundary; handed to queue retry."""


class PersistenceDegradation(JobDigestError):
    """A non-critical store write failed; the run continues."""


class NotificationError(JobDigestError):
    """A notifier delivery failed."""


class UnknownRunKind(JobDigestError):
    pass
