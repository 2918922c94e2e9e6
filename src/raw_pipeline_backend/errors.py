"""
Exception types raised by the processing pipeline.

Every failure that reaches a job boundary is written onto the job record as
``status=failed`` with ``str(exc)`` as the error, so messages here are meant to
be read by an admin looking at the job list.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(PipelineError):
    """A credential or editing profile is missing. Never retried."""


class EditorAPIError(PipelineError):
    """The remote editing service (or one of its presigned links) returned a non-2xx response."""

    def __init__(self, operation: str, status_code: int, body: str = "") -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(f"{operation} failed: {status_code} {body}".rstrip())

    @property
    def is_transient(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class EditorResponseError(PipelineError):
    """A 2xx response from the editing service was missing a required field."""


class JobClaimConflict(PipelineError):
    """A conditional status transition found the job in an unexpected state."""

    def __init__(self, job_id: str, expected_status: Optional[str]) -> None:
        self.job_id = job_id
        self.expected_status = getattr(expected_status, "value", expected_status)
        super().__init__(f"Job {job_id} is no longer in status '{self.expected_status}'")


class JobNotFoundError(PipelineError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Processing job {job_id} not found")


class InvalidJobStateError(PipelineError):
    """The requested action is not allowed from the job's current status."""
