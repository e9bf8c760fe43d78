"""
Error taxonomy for InstructorLink.

Scorer-level and instructor-level problems degrade results locally; only
configuration and publish errors are allowed to stop a run.
"""


class InstructorLinkError(Exception):
    """Base class for all InstructorLink errors."""


class MalformedRecord(InstructorLinkError):
    """A name or subject string could not be parsed."""

    def __init__(self, message: str, record_key: str = ""):
        super().__init__(message)
        self.record_key = record_key


class WeightInvariantViolation(InstructorLinkError):
    """Configured signal weights do not sum to exactly 1.0."""


class PublishFailure(InstructorLinkError):
    """The final link batch could not be committed to storage."""


class RunCancelled(InstructorLinkError):
    """A matching run was aborted before publish (timeout or cancel())."""
