"""
Error taxonomy for the gym setup orchestrator.

Only ValidationError, InvalidTransition, GymNotFound and LastGymError are
meant to reach a user. The rest are recovered from inside the orchestrator.
"""

from typing import Optional
from uuid import UUID


class GymSetupError(Exception):
    """Base class for orchestrator errors."""


class ValidationError(GymSetupError):
    """Bad input (empty name, gym cap reached). Raised before any side effect."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidTransition(GymSetupError):
    """Event not accepted in the current wizard step."""

    def __init__(self, step: str, event: str):
        super().__init__(f"Cannot handle '{event}' while setup is in step '{step}'")
        self.step = step
        self.event = event


class GymNotFound(GymSetupError):
    def __init__(self, gym_id: UUID):
        super().__init__(f"Gym not found: {gym_id}")
        self.gym_id = gym_id


class LastGymError(GymSetupError):
    """Deleting the gym would leave the user without any gym."""


class PrerequisiteMissing(GymSetupError):
    """Profile fields required for plan generation are absent."""

    def __init__(self, missing_fields):
        self.missing_fields = tuple(missing_fields)
        super().__init__(f"Missing profile fields: {', '.join(self.missing_fields)}")


class TransientRemoteError(GymSetupError):
    """Remote store read/write failed (network, lock timeout, lost connection)."""


class GenerationFailure(GymSetupError):
    """Plan generation service unavailable, timed out or rejected the request."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class SyncFailure(GymSetupError):
    """A local plan cache write failed."""


class PartialCopyFailure(GenerationFailure):
    """Equipment/exercises were copied from a source gym but its plans were not."""

    def __init__(self, message: str, code: Optional[str] = None, report=None):
        super().__init__(message, code=code)
        self.report = report
