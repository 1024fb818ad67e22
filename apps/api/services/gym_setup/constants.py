"""
Constants for gym setup.

Values here are contract values shared with the generation service and the
mobile/web clients; changing them is a wire-format change.
"""

from enum import Enum


MAX_GYMS_PER_USER = 3


class ProgramType(str, Enum):
    """Core programme types the generator understands."""
    UPPER_LOWER = "ulul"       # 4-Day Upper/Lower
    PUSH_PULL_LEGS = "ppl"     # 3-Day Push/Pull/Legs


class SessionLength(str, Enum):
    """Preferred session length buckets (minutes)."""
    SHORT = "15-30"
    MEDIUM = "30-45"
    STANDARD = "45-60"
    LONG = "60-90"


PROGRAM_TEMPLATE_NAMES = {
    ProgramType.UPPER_LOWER.value: "4-Day Upper/Lower",
    ProgramType.PUSH_PULL_LEGS.value: "3-Day Push/Pull/Legs",
}


class SetupOption(str, Enum):
    """How a new gym gets its starting equipment and exercises."""
    AI_UPLOAD = "ai_upload"
    COPY = "copy"
    DEFAULTS = "defaults"
    EMPTY = "empty"


class GenerationMode(str, Enum):
    GENERATE = "generate"
    COPY = "copy"


class GenerationStatus(str, Enum):
    """Profile.plan_generation_status values."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# Structured error code returned by the generation service when a copy source
# has no child workouts.
NO_WORKOUTS_TO_COPY = "NO_WORKOUTS_TO_COPY"

# Message fragments the service used before it returned codes.
NO_WORKOUTS_TO_COPY_MESSAGES = (
    "does not have any workouts to copy",
    "no workouts to copy",
)
