"""
Error taxonomy for the builder orchestrator.

- FleetApiError: any failure of a fleet API call (optionally with an HTTP status)
- RetriesExhaustedError: a transient failure that outlived its retry budget
- BuildCancelled: the caller cancelled the operation between attempts
- EnsureBuilderError: the single caller-visible failure, tagged with its phase

is_transient() is the one place that decides whether a failure is worth retrying.
"""

from typing import Optional


class FleetApiError(Exception):
    """A fleet API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is not None:
            return f"{message} (status {self.status_code})"
        return message


class RetriesExhaustedError(FleetApiError):
    """A transient failure kept happening until the attempt budget ran out."""

    def __init__(self, description: str, attempts: int, last_error: FleetApiError):
        super().__init__(
            f"{description} failed after {attempts} attempts: {last_error}",
            status_code=last_error.status_code,
        )
        self.description = description
        self.attempts = attempts
        self.last_error = last_error

    def __str__(self) -> str:
        return self.args[0]


class BuildCancelled(Exception):
    """The caller cancelled the operation."""


class EnsureBuilderError(Exception):
    """Ensuring a builder failed in one of the validate/decommission/create phases."""

    PHASES = ("validate", "decommission", "create")

    def __init__(self, phase: str, cause: BaseException):
        if phase not in self.PHASES:
            raise ValueError(f"unknown phase {phase!r}")
        super().__init__(f"{phase} builder: {cause}")
        self.phase = phase
        self.cause = cause


def is_transient(exc: BaseException) -> bool:
    """Only server-side (5xx) responses are worth retrying."""
    if not isinstance(exc, FleetApiError) or isinstance(exc, RetriesExhaustedError):
        return False
    status = exc.status_code
    return status is not None and 500 <= status <= 599
