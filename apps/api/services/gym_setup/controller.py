"""
Gym setup wizard controller.

Loads the owner's FlowState, applies an event through ``flow.transition``,
saves the new state, then runs the returned effects against the store and
services. An effect may produce a follow-up event (gym created, photos
analysed, plan generated ...), which is fed back through the same loop.

The controller commits the store session after every effect that writes,
so external services (plan generation) and the background reap task see
the gym as soon as the wizard has created it.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, Optional, Sequence
from uuid import UUID, uuid4

from core.logging import log_fields
from services.gym_setup.constants import GenerationMode, SetupOption
from services.gym_setup.errors import (
    GenerationFailure,
    GymNotFound,
    PrerequisiteMissing,
    TransientRemoteError,
    ValidationError,
)
from services.gym_setup.flow import (
    Cancel,
    ChooseOption,
    CompleteProfile,
    ConfirmExercises,
    CopyApplied,
    DefaultsApplied,
    Effect,
    ExerciseLinkFailed,
    ExercisesLinked,
    Finish,
    FlowState,
    GenerationDeferred,
    GymCreated,
    GymCreateFailed,
    PhotosAnalyzed,
    PlanGenerated,
    PrerequisitesMissing,
    SetupResult,
    SetupStep,
    StartAddGym,
    StepFailed,
    SubmitName,
    UploadPhotos,
    transition,
)
from services.gym_setup.generation import PlanGenerationCoordinator
from services.gym_setup.mirror import LocalMirrorSynchronizer
from services.gym_setup.reaper import IncompleteGymReaper
from services.gym_setup.session_store import SetupSessionStore
from services.gym_setup.sources import GymAnalysisError, GymSetupSources
from services.gym_setup.store import GymStore

logger = logging.getLogger(__name__)


class BackgroundDispatcher(ABC):
    """Hands work to something outside the request. Implementations log failures instead of raising."""

    @abstractmethod
    def reap(self, owner_id: UUID) -> None:
        """Enqueue a reap of the owner's incomplete gyms."""
        pass

    @abstractmethod
    def full_resync(self, owner_id: UUID) -> None:
        """Enqueue a full rebuild of the owner's local plan cache."""
        pass


class CeleryDispatcher(BackgroundDispatcher):
    def reap(self, owner_id: UUID) -> None:
        from tasks.gym_setup_tasks import reap_incomplete_gyms_task

        try:
            reap_incomplete_gyms_task.delay(str(owner_id))
        except Exception as e:
            logger.error(f"Failed to enqueue gym reap for owner {owner_id}: {e}")

    def full_resync(self, owner_id: UUID) -> None:
        from tasks.gym_setup_tasks import resync_local_plan_cache_task

        try:
            resync_local_plan_cache_task.delay(str(owner_id))
        except Exception as e:
            logger.error(f"Failed to enqueue local plan resync for owner {owner_id}: {e}")


@dataclass
class SetupResponse:
    state: FlowState
    result: Optional[SetupResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "result": self.result.to_dict() if self.result else None,
        }


class FlowController:
    def __init__(
        self,
        owner_id: UUID,
        store: GymStore,
        sessions: SetupSessionStore,
        *,
        coordinator: Optional[PlanGenerationCoordinator] = None,
        sources: Optional[GymSetupSources] = None,
        synchronizer: Optional[LocalMirrorSynchronizer] = None,
        reaper: Optional[IncompleteGymReaper] = None,
        dispatcher: Optional[BackgroundDispatcher] = None,
        on_refresh: Optional[Callable[[UUID], None]] = None,
    ):
        self.owner_id = owner_id
        self.store = store
        self.sessions = sessions
        self.coordinator = coordinator or PlanGenerationCoordinator(store)
        self.sources = sources or GymSetupSources(store)
        self.synchronizer = synchronizer
        self.reaper = reaper or IncompleteGymReaper(store)
        self.dispatcher = dispatcher or CeleryDispatcher()
        self.on_refresh = on_refresh

    @property
    def state(self) -> FlowState:
        return self.sessions.load(self.owner_id) or FlowState(owner_id=self.owner_id)

    def status(self) -> SetupResponse:
        state = self.state
        return SetupResponse(state, None if state.active else state.last_result)

    # ---- Operations ----

    def start_add_gym(self) -> SetupResponse:
        return self._dispatch(StartAddGym(session_id=uuid4(), gym_count=self.store.count_gyms(self.owner_id)))

    def submit_name(self, name: str, set_as_active: bool = False) -> SetupResponse:
        return self._dispatch(
            SubmitName(name=name, gym_count=self.store.count_gyms(self.owner_id), set_as_active=set_as_active)
        )

    def choose_option(self, option, source_gym_id: Optional[UUID] = None) -> SetupResponse:
        try:
            option = SetupOption(option)
        except ValueError:
            raise ValidationError(f"Unknown setup option: {option}", field="option")
        if option == SetupOption.COPY and source_gym_id is not None:
            self.store.get_gym(self.owner_id, source_gym_id)
        return self._dispatch(ChooseOption(option=option, source_gym_id=source_gym_id))

    def upload_photos(self, images: Sequence[str]) -> SetupResponse:
        return self._dispatch(UploadPhotos(images=tuple(images or ())))

    def confirm_exercises(self, exercise_ids: Iterable[UUID]) -> SetupResponse:
        return self._dispatch(ConfirmExercises(exercise_ids=tuple(exercise_ids or ())))

    def complete_profile(
        self, program_type: Optional[str] = None, preferred_session_length: Optional[str] = None
    ) -> SetupResponse:
        fields = {
            k: v
            for k, v in (("program_type", program_type), ("preferred_session_length", preferred_session_length))
            if v is not None
        }
        still_missing = tuple(f for f in self.coordinator.missing_prerequisites(self.owner_id) if f not in fields)
        return self._dispatch(CompleteProfile(fields=fields, still_missing=still_missing))

    def finish(self) -> SetupResponse:
        return self._dispatch(Finish())

    def cancel(self) -> SetupResponse:
        return self._dispatch(Cancel())

    # ---- Event loop ----

    def _dispatch(self, event) -> SetupResponse:
        before = self.state
        outcome = transition(before, event)
        self.sessions.save(outcome.state)
        logger.info(
            f"Gym setup for owner {self.owner_id}: {before.step.value} -> {outcome.state.step.value} "
            f"on {type(event).__name__}",
            extra=log_fields(
                owner_id=str(self.owner_id),
                gym_id=str(outcome.state.in_progress_gym_id) if outcome.state.in_progress_gym_id else None,
                step=outcome.state.step.value,
            ),
        )

        for effect in outcome.effects:
            follow_up = self._run(effect, outcome.state)
            if follow_up is not None:
                return self._dispatch(follow_up)

        current = self.state
        result = outcome.result
        if result is None and not current.active and current.session_id == outcome.state.session_id:
            # Superseded while an effect ran (e.g. cancelled during generation).
            result = current.last_result
        return SetupResponse(current, result)

    def _run(self, effect: Effect, state: FlowState):
        handler = getattr(self, f"_effect_{effect.kind.value}")
        return handler(state, **effect.payload)

    def _missing_profile_fields(self):
        return self.coordinator.missing_prerequisites(self.owner_id)

    # ---- Effects ----

    def _effect_reap_in_background(self, state: FlowState):
        self.dispatcher.reap(self.owner_id)

    def _effect_create_gym(self, state: FlowState, name: str):
        try:
            gym = self.store.create_gym(self.owner_id, name)
            # Protect the gym before it becomes visible to a background reap.
            self.sessions.save(replace(state, in_progress_gym_id=gym.id))
            self.store.commit()
        except TransientRemoteError as e:
            logger.error(f"Could not create gym '{name}' for owner {self.owner_id}: {e}")
            self._rollback()
            return GymCreateFailed("We couldn't create your gym. Please try again.")
        return GymCreated(gym_id=gym.id)

    def _effect_analyze_photos(self, state: FlowState, gym_id: UUID, images):
        try:
            result = self.sources.analyze_photos(gym_id, images)
            self.store.commit()
        except (GymAnalysisError, TransientRemoteError) as e:
            logger.warning(f"Photo analysis failed for gym {gym_id}: {e}")
            self._rollback()
            return StepFailed("We couldn't analyse your photos. Please try again.")
        return PhotosAnalyzed(exercise_ids=tuple(result.exercise_ids))

    def _effect_copy_setup(self, state: FlowState, source_gym_id: UUID, gym_id: UUID):
        try:
            report = self.sources.copy_from_gym(self.owner_id, source_gym_id, gym_id)
            self.store.commit()
            missing = self._missing_profile_fields()
        except (GymNotFound, TransientRemoteError) as e:
            logger.warning(f"Copying gym {source_gym_id} into {gym_id} failed: {e}")
            self._rollback()
            return StepFailed("We couldn't copy that gym. Please try again.")
        return CopyApplied(report=report.to_dict(), profile_complete=not missing)

    def _effect_apply_defaults(self, state: FlowState, gym_id: UUID):
        try:
            count = self.sources.apply_defaults(gym_id)
            self.store.commit()
        except TransientRemoteError as e:
            logger.warning(f"Applying default equipment to gym {gym_id} failed: {e}")
            self._rollback()
            return StepFailed("We couldn't set up the default equipment. Please try again.")
        return DefaultsApplied(equipment_count=count)

    def _effect_link_exercises(self, state: FlowState, gym_id: UUID, exercise_ids, previous_selection):
        try:
            self.store.insert_exercise_pool_entries(gym_id, exercise_ids)
            self.store.commit()
            missing = self._missing_profile_fields()
        except TransientRemoteError as e:
            logger.warning(f"Linking exercises to gym {gym_id} failed, restoring previous selection: {e}")
            self._rollback()
            return ExerciseLinkFailed(
                previous_selection=tuple(previous_selection),
                message="We couldn't save your exercise selection. Please try again.",
            )
        return ExercisesLinked(profile_complete=not missing)

    def _effect_save_profile(self, state: FlowState, fields: Dict[str, str]):
        try:
            self.store.update_profile(self.owner_id, **fields)
            self.store.commit()
        except TransientRemoteError as e:
            logger.warning(f"Saving profile for owner {self.owner_id} failed: {e}")
            self._rollback()
            return StepFailed("We couldn't save your profile. Please try again.")
        return None

    def _effect_generate_plan(
        self, state: FlowState, gym_id: UUID, mode, source_gym_id: Optional[UUID], session_id: Optional[UUID]
    ):
        result = None
        try:
            result = self.coordinator.generate(
                self.owner_id,
                gym_id,
                mode=GenerationMode(mode),
                source_gym_id=source_gym_id,
                make_active=state.set_as_active or not state.had_gyms_before_setup,
            )
            event = PlanGenerated(
                main_plan_id=result.main_plan_id,
                child_plan_count=len(result.child_plans),
                note=result.note,
            )
        except PrerequisiteMissing as e:
            event = PrerequisitesMissing(missing_fields=e.missing_fields)
        except GenerationFailure as e:
            event = GenerationDeferred(message=str(e))
        except TransientRemoteError as e:
            logger.warning(f"Plan generation for gym {gym_id} failed on the remote store: {e}")
            event = StepFailed("We couldn't finish setting up your gym. Please try again.")

        try:
            self.store.commit()
        except TransientRemoteError as e:
            logger.warning(f"Could not commit plan generation status for owner {self.owner_id}: {e}")
            self._rollback()

        if self._superseded(session_id):
            logger.info(
                f"Discarding plan generation result for gym {gym_id}: setup was cancelled meanwhile",
                extra=log_fields(owner_id=str(self.owner_id), gym_id=str(gym_id)),
            )
            return None

        if result is not None and result.plan_tree is not None and self.synchronizer is not None:
            self.synchronizer.mirror(result.plan_tree)
        return event

    def _effect_finalize_gym(self, state: FlowState, gym_id: UUID, set_as_active: bool):
        if gym_id is None:
            return None
        try:
            profile = self.store.get_profile(self.owner_id)
            active_gym_id = profile.active_gym_id if profile else None
            owned = {g.id for g in self.store.list_gyms(self.owner_id)}
            if set_as_active or active_gym_id is None or active_gym_id not in owned:
                self.store.update_profile(self.owner_id, active_gym_id=gym_id)
            self.store.commit()
        except TransientRemoteError as e:
            logger.error(f"Could not finalize gym {gym_id} for owner {self.owner_id}: {e}")
            self._rollback()
        return None

    def _effect_force_reap(self, state: FlowState, gym_id: UUID, allow_last_gym: bool):
        deleted = self.reaper.reap(self.owner_id, force_gym_id=gym_id, allow_last_gym=allow_last_gym)
        try:
            self.store.commit()
        except TransientRemoteError as e:
            logger.error(f"Could not commit cleanup of gym {gym_id}: {e}")
            self._rollback()
            return None
        if deleted:
            logger.info(f"Cleaned up abandoned gym {gym_id} for owner {self.owner_id}")
        return None

    def _effect_refresh(self, state: FlowState):
        if self.on_refresh is not None:
            self.on_refresh(self.owner_id)
        return None

    # ---- Helpers ----

    def _superseded(self, session_id: Optional[UUID]) -> bool:
        current = self.sessions.load(self.owner_id)
        return current is None or current.session_id != session_id or current.step != SetupStep.GENERATING_PLAN

    def _rollback(self) -> None:
        try:
            self.store.rollback()
        except TransientRemoteError as e:
            logger.error(f"Rollback failed for owner {self.owner_id}: {e}")
