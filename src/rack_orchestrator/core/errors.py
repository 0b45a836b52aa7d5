"""
Error taxonomy.

We separate error types so callers can react correctly.
Example:
ValidationError is raised before any task row is created.
NotFoundError means a rack or component reference did not resolve.
DispatchError means a workflow could not be started for a rack.
HardwareActionError means an activity exhausted its retries.
PersistenceError means the task store rejected a write.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for all orchestrator exceptions."""


class ValidationError(OrchestratorError):
    """Raised when a request, target spec, or operation info is malformed."""


class NotFoundError(OrchestratorError):
    """Raised when a rack, component, task, or component manager does not exist."""


class DispatchError(OrchestratorError):
    """Raised when a workflow could not be started for a rack."""


class HardwareActionError(OrchestratorError):
    """
    Raised when a remote activity failed after its retry budget was spent.

    activity is the stable activity name.
    attempts is the number of attempts made.
    """

    def __init__(self, activity: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"activity {activity} failed after {attempts} attempt(s): {cause}")
        self.activity = activity
        self.attempts = attempts
        self.cause = cause


class PersistenceError(OrchestratorError):
    """Raised when the task store fails or rejects a write."""


class WorkflowCancelled(OrchestratorError):
    """Raised at an activity boundary when a workflow is cancelled or past its deadline."""
