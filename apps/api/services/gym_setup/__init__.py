# Gym Setup Orchestrator
#
# Drives creation of a new gym through the setup wizard, reaps abandoned
# gyms, keeps the active gym pointer valid and mirrors generated plan trees
# into the local plan cache.
#
# Architecture:
# - flow.py: pure wizard state machine (state + event -> state + effects)
# - controller.py: runs effects against the store and services
# - reaper.py / completeness.py / active_gym.py: gym lifecycle invariants
# - generation.py: plan generation service client and coordinator
# - mirror.py / local_cache.py: local replica of plan trees

from .constants import MAX_GYMS_PER_USER, GenerationMode, ProgramType, SessionLength, SetupOption
from .errors import (
    GenerationFailure,
    GymNotFound,
    GymSetupError,
    InvalidTransition,
    LastGymError,
    PartialCopyFailure,
    PrerequisiteMissing,
    SyncFailure,
    TransientRemoteError,
    ValidationError,
)
from .store import GymStore, PlanTree
from .completeness import GymCompletenessChecker
from .active_gym import ActiveGymResolver
from .reaper import IncompleteGymReaper
from .gym_management import GymManager
from .generation import GenerationResult, PlanGenerationClient, PlanGenerationCoordinator
from .local_cache import LocalPlanCache
from .mirror import LocalMirrorSynchronizer, MirrorResult
from .sources import GymAnalysisClient, GymSetupSources
from .flow import FlowState, SetupResult, SetupStep, transition
from .session_store import SetupSessionStore
from .controller import BackgroundDispatcher, CeleryDispatcher, FlowController, SetupResponse

__all__ = [
    # Lifecycle
    'GymStore',
    'GymCompletenessChecker',
    'ActiveGymResolver',
    'IncompleteGymReaper',
    'GymManager',

    # Plans
    'PlanTree',
    'PlanGenerationClient',
    'PlanGenerationCoordinator',
    'GenerationResult',
    'LocalPlanCache',
    'LocalMirrorSynchronizer',
    'MirrorResult',

    # Wizard
    'GymAnalysisClient',
    'GymSetupSources',
    'FlowState',
    'SetupResult',
    'SetupStep',
    'transition',
    'SetupSessionStore',
    'BackgroundDispatcher',
    'CeleryDispatcher',
    'FlowController',
    'SetupResponse',

    # Constants
    'MAX_GYMS_PER_USER',
    'GenerationMode',
    'ProgramType',
    'SessionLength',
    'SetupOption',

    # Errors
    'GymSetupError',
    'ValidationError',
    'InvalidTransition',
    'GymNotFound',
    'LastGymError',
    'PrerequisiteMissing',
    'TransientRemoteError',
    'GenerationFailure',
    'SyncFailure',
    'PartialCopyFailure',
]
