"""
Gym Setup API Router

Wizard endpoints for adding a gym (/v1/gyms/setup/*) and management
endpoints for existing gyms (/v1/gyms/*). Every wizard endpoint returns the
current flow state and, when the setup just ended, its result.
"""
from typing import Callable, TypeVar
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import get_current_profile
from core.database import get_db
from core.exceptions import api_error_from_setup_error
from models import Profile
from schemas import (
    GymDeleteResponse,
    GymListResponse,
    GymRenameRequest,
    GymResponse,
    SetupExercisesRequest,
    SetupNameRequest,
    SetupOptionRequest,
    SetupPhotosRequest,
    SetupProfileRequest,
    SetupStateResponse,
)
from services.gym_setup.completeness import GymCompletenessChecker
from services.gym_setup.controller import BackgroundDispatcher, CeleryDispatcher, FlowController, SetupResponse
from services.gym_setup.errors import GymSetupError
from services.gym_setup.generation import PlanGenerationClient, PlanGenerationCoordinator
from services.gym_setup.gym_management import GymManager
from services.gym_setup.local_cache import LocalPlanCache, get_local_cache_engine
from services.gym_setup.mirror import LocalMirrorSynchronizer
from services.gym_setup.session_store import SetupSessionStore
from services.gym_setup.sources import GymAnalysisClient, GymSetupSources
from services.gym_setup.store import GymStore

router = APIRouter(prefix="/v1/gyms", tags=["gyms"])

T = TypeVar("T")


# ---- Dependencies (overridden in tests) ----

def get_setup_sessions() -> SetupSessionStore:
    return SetupSessionStore.default()


def get_background_dispatcher() -> BackgroundDispatcher:
    return CeleryDispatcher()


def get_plan_generation_client() -> PlanGenerationClient:
    return PlanGenerationClient()


def get_gym_analysis_client() -> GymAnalysisClient:
    return GymAnalysisClient()


def get_local_plan_cache_engine():
    return get_local_cache_engine()


def get_flow_controller(
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    sessions: SetupSessionStore = Depends(get_setup_sessions),
    dispatcher: BackgroundDispatcher = Depends(get_background_dispatcher),
    generation_client: PlanGenerationClient = Depends(get_plan_generation_client),
    analysis_client: GymAnalysisClient = Depends(get_gym_analysis_client),
    cache_engine=Depends(get_local_plan_cache_engine),
) -> FlowController:
    store = GymStore(db)
    cache = LocalPlanCache(engine=cache_engine, snapshot_source=store.load_plan_snapshot)
    return FlowController(
        profile.owner_id,
        store,
        sessions,
        coordinator=PlanGenerationCoordinator(store, generation_client),
        sources=GymSetupSources(store, analysis_client),
        synchronizer=LocalMirrorSynchronizer(cache, resync=dispatcher.full_resync),
        dispatcher=dispatcher,
    )


def _handle(call: Callable[[], T]) -> T:
    try:
        return call()
    except GymSetupError as e:
        raise api_error_from_setup_error(e)


def _respond(call: Callable[[], SetupResponse]) -> dict:
    return _handle(call).to_dict()


# ---- Wizard ----

@router.get("/setup", response_model=SetupStateResponse)
def get_setup_state(controller: FlowController = Depends(get_flow_controller)):
    """Current wizard state (idle when no setup is open)."""
    return _respond(controller.status)


@router.post("/setup/start", response_model=SetupStateResponse)
def start_gym_setup(controller: FlowController = Depends(get_flow_controller)):
    """
    Open the add-gym wizard.

    Abandoned gyms from earlier setups are cleaned up in the background.
    """
    return _respond(controller.start_add_gym)


@router.post("/setup/name", response_model=SetupStateResponse)
def submit_gym_name(request: SetupNameRequest, controller: FlowController = Depends(get_flow_controller)):
    return _respond(lambda: controller.submit_name(request.name, set_as_active=request.set_as_active))


@router.post("/setup/option", response_model=SetupStateResponse)
def choose_setup_option(request: SetupOptionRequest, controller: FlowController = Depends(get_flow_controller)):
    return _respond(lambda: controller.choose_option(request.option, source_gym_id=request.source_gym_id))


@router.post("/setup/photos", response_model=SetupStateResponse)
def upload_gym_photos(request: SetupPhotosRequest, controller: FlowController = Depends(get_flow_controller)):
    return _respond(lambda: controller.upload_photos(request.images))


@router.post("/setup/exercises", response_model=SetupStateResponse)
def confirm_gym_exercises(request: SetupExercisesRequest, controller: FlowController = Depends(get_flow_controller)):
    return _respond(lambda: controller.confirm_exercises(request.exercise_ids))


@router.post("/setup/profile", response_model=SetupStateResponse)
def complete_setup_profile(request: SetupProfileRequest, controller: FlowController = Depends(get_flow_controller)):
    """Fill in missing programme type / session length; plan generation starts right after."""
    return _respond(
        lambda: controller.complete_profile(
            program_type=request.program_type,
            preferred_session_length=request.preferred_session_length,
        )
    )


@router.post("/setup/finish", response_model=SetupStateResponse)
def finish_gym_setup(controller: FlowController = Depends(get_flow_controller)):
    return _respond(controller.finish)


@router.post("/setup/cancel", response_model=SetupStateResponse)
def cancel_gym_setup(controller: FlowController = Depends(get_flow_controller)):
    """Abandon the wizard. The half-configured gym is deleted."""
    return _respond(controller.cancel)


# ---- Gym management ----

@router.get("", response_model=GymListResponse)
def list_gyms(profile: Profile = Depends(get_current_profile), db: Session = Depends(get_db)):
    store = GymStore(db)
    checker = GymCompletenessChecker(store)

    def build():
        gyms = store.list_gyms(profile.owner_id)
        return GymListResponse(
            gyms=[
                GymResponse(
                    id=g.id,
                    name=g.name,
                    created_at=g.created_at,
                    is_active=g.id == profile.active_gym_id,
                    is_incomplete=checker.is_incomplete(g.id),
                )
                for g in gyms
            ],
            active_gym_id=profile.active_gym_id,
        )

    return _handle(build)


@router.post("/{gym_id}/activate", response_model=GymListResponse)
def activate_gym(gym_id: UUID, profile: Profile = Depends(get_current_profile), db: Session = Depends(get_db)):
    _handle(lambda: GymManager(GymStore(db)).switch_active_gym(profile.owner_id, gym_id))
    return list_gyms(profile, db)


@router.patch("/{gym_id}", response_model=GymResponse)
def rename_gym(
    gym_id: UUID,
    request: GymRenameRequest,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    gym = _handle(lambda: GymManager(GymStore(db)).rename_gym(profile.owner_id, gym_id, request.name))
    return GymResponse(
        id=gym.id,
        name=gym.name,
        created_at=gym.created_at,
        is_active=gym.id == profile.active_gym_id,
    )


@router.delete("/{gym_id}", response_model=GymDeleteResponse)
def delete_gym(gym_id: UUID, profile: Profile = Depends(get_current_profile), db: Session = Depends(get_db)):
    """Delete a gym. The last remaining gym cannot be deleted."""
    active_gym_id = _handle(lambda: GymManager(GymStore(db)).delete_gym(profile.owner_id, gym_id))
    return GymDeleteResponse(deleted_gym_id=gym_id, active_gym_id=active_gym_id)
