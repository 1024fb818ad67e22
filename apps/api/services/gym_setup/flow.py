"""
Gym setup wizard state machine.

``transition(state, event)`` is a pure function: it returns the next
FlowState and the list of side effects the controller must run. It never
touches the database or the network, so every step of the wizard can be
tested without either.

Steps:

    idle -> naming -> configuring_options -> ai_upload -> selecting_exercises
                                          -> copying
                                          -> applying_defaults
                                          -> (empty finalizes at once)
    selecting_exercises / copying -> collecting_profile -> generating_plan
    generating_plan -> summary -> idle

``cancel`` and ``step_failed`` are accepted from every non-idle step.
"""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
from uuid import UUID

from services.gym_setup.constants import (
    MAX_GYMS_PER_USER,
    GenerationMode,
    ProgramType,
    SessionLength,
    SetupOption,
)
from services.gym_setup.errors import InvalidTransition, ValidationError


class SetupStep(str, Enum):
    IDLE = "idle"
    NAMING = "naming"
    CONFIGURING_OPTIONS = "configuring_options"
    AI_UPLOAD = "ai_upload"
    COPYING = "copying"
    APPLYING_DEFAULTS = "applying_defaults"
    SELECTING_EXERCISES = "selecting_exercises"
    COLLECTING_PROFILE = "collecting_profile"
    GENERATING_PLAN = "generating_plan"
    SUMMARY = "summary"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class SetupResult:
    """Outcome of a finished (or abandoned) setup, shown to the user."""
    status: ResultStatus
    gym_id: Optional[UUID] = None
    message: Optional[str] = None
    step: SetupStep = SetupStep.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "gym_id": str(self.gym_id) if self.gym_id else None,
            "message": self.message,
            "step": self.step.value,
        }


def _uuid(value) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


@dataclass(frozen=True)
class FlowState:
    owner_id: UUID
    step: SetupStep = SetupStep.IDLE
    # Changes on every start_add_gym; a generation result from an older
    # session is discarded.
    session_id: Optional[UUID] = None
    in_progress_gym_id: Optional[UUID] = None
    gym_name: Optional[str] = None
    set_as_active: bool = False
    had_gyms_before_setup: bool = True
    option: Optional[SetupOption] = None
    source_gym_id: Optional[UUID] = None
    generation_mode: GenerationMode = GenerationMode.GENERATE
    candidate_exercise_ids: Tuple[UUID, ...] = ()
    selected_exercise_ids: Tuple[UUID, ...] = ()
    main_plan_id: Optional[UUID] = None
    child_plan_count: int = 0
    plan_deferred: bool = False
    copy_report: Optional[Dict[str, Any]] = None
    cancelled: bool = False
    setup_complete: bool = False
    message: Optional[str] = None
    last_result: Optional[SetupResult] = None

    @property
    def active(self) -> bool:
        return self.step != SetupStep.IDLE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("owner_id", "session_id", "in_progress_gym_id", "source_gym_id", "main_plan_id"):
            data[key] = str(data[key]) if data[key] else None
        data["step"] = self.step.value
        data["option"] = self.option.value if self.option else None
        data["generation_mode"] = self.generation_mode.value
        data["candidate_exercise_ids"] = [str(x) for x in self.candidate_exercise_ids]
        data["selected_exercise_ids"] = [str(x) for x in self.selected_exercise_ids]
        data["last_result"] = self.last_result.to_dict() if self.last_result else None
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlowState":
        last = data.get("last_result")
        return cls(
            owner_id=_uuid(data["owner_id"]),
            step=SetupStep(data.get("step") or SetupStep.IDLE.value),
            session_id=_uuid(data.get("session_id")),
            in_progress_gym_id=_uuid(data.get("in_progress_gym_id")),
            gym_name=data.get("gym_name"),
            set_as_active=bool(data.get("set_as_active")),
            had_gyms_before_setup=bool(data.get("had_gyms_before_setup", True)),
            option=SetupOption(data["option"]) if data.get("option") else None,
            source_gym_id=_uuid(data.get("source_gym_id")),
            generation_mode=GenerationMode(data.get("generation_mode") or GenerationMode.GENERATE.value),
            candidate_exercise_ids=tuple(_uuid(x) for x in data.get("candidate_exercise_ids") or ()),
            selected_exercise_ids=tuple(_uuid(x) for x in data.get("selected_exercise_ids") or ()),
            main_plan_id=_uuid(data.get("main_plan_id")),
            child_plan_count=int(data.get("child_plan_count") or 0),
            plan_deferred=bool(data.get("plan_deferred")),
            copy_report=data.get("copy_report"),
            cancelled=bool(data.get("cancelled")),
            setup_complete=bool(data.get("setup_complete")),
            message=data.get("message"),
            last_result=SetupResult(
                status=ResultStatus(last["status"]),
                gym_id=_uuid(last.get("gym_id")),
                message=last.get("message"),
                step=SetupStep(last.get("step") or SetupStep.IDLE.value),
            ) if last else None,
        )


# ---- Events ----

@dataclass(frozen=True)
class StartAddGym:
    session_id: UUID
    gym_count: int


@dataclass(frozen=True)
class SubmitName:
    name: str
    gym_count: int
    set_as_active: bool = False


@dataclass(frozen=True)
class GymCreated:
    gym_id: UUID


@dataclass(frozen=True)
class GymCreateFailed:
    message: str


@dataclass(frozen=True)
class ChooseOption:
    option: SetupOption
    source_gym_id: Optional[UUID] = None


@dataclass(frozen=True)
class UploadPhotos:
    images: Tuple[str, ...]


@dataclass(frozen=True)
class PhotosAnalyzed:
    exercise_ids: Tuple[UUID, ...]


@dataclass(frozen=True)
class CopyApplied:
    report: Dict[str, Any]
    profile_complete: bool


@dataclass(frozen=True)
class DefaultsApplied:
    equipment_count: int = 0


@dataclass(frozen=True)
class ConfirmExercises:
    exercise_ids: Tuple[UUID, ...]


@dataclass(frozen=True)
class ExercisesLinked:
    profile_complete: bool


@dataclass(frozen=True)
class ExerciseLinkFailed:
    previous_selection: Tuple[UUID, ...]
    message: str


@dataclass(frozen=True)
class CompleteProfile:
    fields: Dict[str, str]
    # Required fields still missing once ``fields`` is applied.
    still_missing: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PlanGenerated:
    main_plan_id: Optional[UUID]
    child_plan_count: int = 0
    note: Optional[str] = None


@dataclass(frozen=True)
class GenerationDeferred:
    message: str


@dataclass(frozen=True)
class PrerequisitesMissing:
    missing_fields: Tuple[str, ...]


@dataclass(frozen=True)
class Finish:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class StepFailed:
    message: str


# ---- Effects ----

class EffectKind(str, Enum):
    REAP_IN_BACKGROUND = "reap_in_background"
    CREATE_GYM = "create_gym"
    ANALYZE_PHOTOS = "analyze_photos"
    COPY_SETUP = "copy_setup"
    APPLY_DEFAULTS = "apply_defaults"
    LINK_EXERCISES = "link_exercises"
    SAVE_PROFILE = "save_profile"
    GENERATE_PLAN = "generate_plan"
    FINALIZE_GYM = "finalize_gym"
    FORCE_REAP = "force_reap"
    REFRESH = "refresh"


@dataclass(frozen=True)
class Effect:
    kind: EffectKind
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    state: FlowState
    effects: Tuple[Effect, ...] = ()
    result: Optional[SetupResult] = None


# ---- Transition function ----

def _back_to_idle(state: FlowState, result: SetupResult, **fields) -> FlowState:
    return FlowState(
        owner_id=state.owner_id,
        step=SetupStep.IDLE,
        session_id=state.session_id,
        message=result.message,
        last_result=result,
        **fields,
    )


def _forced_reap(state: FlowState) -> Tuple[Effect, ...]:
    if state.in_progress_gym_id is None:
        return ()
    return (
        Effect(
            EffectKind.FORCE_REAP,
            {
                "gym_id": state.in_progress_gym_id,
                # Only a user who had no gym before may be left with none.
                "allow_last_gym": not state.had_gyms_before_setup,
            },
        ),
    )


def _generate(state: FlowState) -> Transition:
    new = replace(state, step=SetupStep.GENERATING_PLAN, message=None)
    return Transition(
        new,
        (
            Effect(
                EffectKind.GENERATE_PLAN,
                {
                    "gym_id": state.in_progress_gym_id,
                    "mode": state.generation_mode,
                    "source_gym_id": state.source_gym_id,
                    "session_id": state.session_id,
                },
            ),
        ),
    )


def _finalize(state: FlowState) -> Transition:
    if state.plan_deferred:
        status = ResultStatus.DEFERRED
        message = state.message or "Your gym is ready. Your workout plan will be generated later."
    else:
        status = ResultStatus.SUCCESS
        message = state.message or f"Gym '{state.gym_name}' is ready"
    result = SetupResult(status=status, gym_id=state.in_progress_gym_id, message=message, step=state.step)
    return Transition(
        _back_to_idle(state, result, setup_complete=True),
        (
            Effect(
                EffectKind.FINALIZE_GYM,
                {
                    "gym_id": state.in_progress_gym_id,
                    "set_as_active": state.set_as_active or not state.had_gyms_before_setup,
                },
            ),
            Effect(EffectKind.REFRESH),
        ),
        result,
    )


def _on_start(state: FlowState, event: StartAddGym) -> Transition:
    new = FlowState(
        owner_id=state.owner_id,
        step=SetupStep.NAMING,
        session_id=event.session_id,
        had_gyms_before_setup=event.gym_count > 0,
    )
    return Transition(new, (Effect(EffectKind.REAP_IN_BACKGROUND),))


def _on_submit_name(state: FlowState, event: SubmitName) -> Transition:
    name = (event.name or "").strip()
    if not name:
        raise ValidationError("Please enter a gym name", field="name")
    if event.gym_count >= MAX_GYMS_PER_USER:
        raise ValidationError(
            f"You already have {MAX_GYMS_PER_USER} gyms. Delete one before adding another.", field="name"
        )
    new = replace(state, gym_name=name, set_as_active=event.set_as_active, message=None)
    return Transition(new, (Effect(EffectKind.CREATE_GYM, {"name": name}),))


def _on_gym_created(state: FlowState, event: GymCreated) -> Transition:
    return Transition(replace(state, step=SetupStep.CONFIGURING_OPTIONS, in_progress_gym_id=event.gym_id))


def _on_gym_create_failed(state: FlowState, event: GymCreateFailed) -> Transition:
    # Nothing was written, so there is nothing to reap.
    result = SetupResult(ResultStatus.ERROR, message=event.message, step=state.step)
    return Transition(_back_to_idle(state, result), (), result)


def _on_choose_option(state: FlowState, event: ChooseOption) -> Transition:
    option = SetupOption(event.option)
    state = replace(state, option=option, message=None)

    if option == SetupOption.AI_UPLOAD:
        return Transition(replace(state, step=SetupStep.AI_UPLOAD))

    if option == SetupOption.COPY:
        if event.source_gym_id is None:
            raise ValidationError("Choose a gym to copy from", field="source_gym_id")
        if event.source_gym_id == state.in_progress_gym_id:
            raise ValidationError("Choose a different gym to copy from", field="source_gym_id")
        new = replace(
            state,
            step=SetupStep.COPYING,
            source_gym_id=event.source_gym_id,
            generation_mode=GenerationMode.COPY,
        )
        return Transition(
            new,
            (
                Effect(
                    EffectKind.COPY_SETUP,
                    {"source_gym_id": event.source_gym_id, "gym_id": state.in_progress_gym_id},
                ),
            ),
        )

    if option == SetupOption.DEFAULTS:
        return Transition(
            replace(state, step=SetupStep.APPLYING_DEFAULTS),
            (Effect(EffectKind.APPLY_DEFAULTS, {"gym_id": state.in_progress_gym_id}),),
        )

    # Empty gym: nothing to configure.
    return _finalize(state)


def _on_upload_photos(state: FlowState, event: UploadPhotos) -> Transition:
    if not event.images:
        raise ValidationError("Add at least one photo of your gym", field="images")
    return Transition(
        replace(state, message=None),
        (Effect(EffectKind.ANALYZE_PHOTOS, {"gym_id": state.in_progress_gym_id, "images": tuple(event.images)}),),
    )


def _on_photos_analyzed(state: FlowState, event: PhotosAnalyzed) -> Transition:
    ids = tuple(event.exercise_ids)
    return Transition(
        replace(state, step=SetupStep.SELECTING_EXERCISES, candidate_exercise_ids=ids, selected_exercise_ids=ids)
    )


def _on_copy_applied(state: FlowState, event: CopyApplied) -> Transition:
    state = replace(state, copy_report=dict(event.report))
    if event.profile_complete:
        return _generate(state)
    return Transition(replace(state, step=SetupStep.COLLECTING_PROFILE))


def _on_defaults_applied(state: FlowState, event: DefaultsApplied) -> Transition:
    return _finalize(state)


def _on_confirm_exercises(state: FlowState, event: ConfirmExercises) -> Transition:
    selected = tuple(dict.fromkeys(event.exercise_ids))
    if not selected:
        raise ValidationError("Select at least one exercise", field="exercise_ids")
    # Apply locally first; ExerciseLinkFailed restores the previous selection.
    new = replace(state, selected_exercise_ids=selected, message=None)
    return Transition(
        new,
        (
            Effect(
                EffectKind.LINK_EXERCISES,
                {
                    "gym_id": state.in_progress_gym_id,
                    "exercise_ids": selected,
                    "previous_selection": state.selected_exercise_ids,
                },
            ),
        ),
    )


def _on_exercises_linked(state: FlowState, event: ExercisesLinked) -> Transition:
    if event.profile_complete:
        return _generate(state)
    return Transition(replace(state, step=SetupStep.COLLECTING_PROFILE))


def _on_exercise_link_failed(state: FlowState, event: ExerciseLinkFailed) -> Transition:
    return Transition(replace(state, selected_exercise_ids=tuple(event.previous_selection), message=event.message))


def _on_complete_profile(state: FlowState, event: CompleteProfile) -> Transition:
    fields = dict(event.fields)
    if "program_type" in fields and fields["program_type"] not in {p.value for p in ProgramType}:
        raise ValidationError(f"Unknown program type: {fields['program_type']}", field="program_type")
    if "preferred_session_length" in fields and fields["preferred_session_length"] not in {
        s.value for s in SessionLength
    }:
        raise ValidationError(
            f"Unknown session length: {fields['preferred_session_length']}", field="preferred_session_length"
        )
    if event.still_missing:
        raise ValidationError(
            f"Missing profile fields: {', '.join(event.still_missing)}", field=event.still_missing[0]
        )
    generate = _generate(state)
    effects = (Effect(EffectKind.SAVE_PROFILE, {"fields": fields}),) if fields else ()
    return Transition(generate.state, effects + generate.effects)


def _on_plan_generated(state: FlowState, event: PlanGenerated) -> Transition:
    return Transition(
        replace(
            state,
            step=SetupStep.SUMMARY,
            main_plan_id=event.main_plan_id,
            child_plan_count=event.child_plan_count,
            plan_deferred=False,
            message=event.note,
        )
    )


def _on_generation_deferred(state: FlowState, event: GenerationDeferred) -> Transition:
    if state.generation_mode == GenerationMode.COPY:
        # Equipment and exercises were copied; the gym is usable without plans.
        report = dict(state.copy_report or {})
        report["plan_error"] = event.message
        return Transition(
            replace(
                state,
                step=SetupStep.SUMMARY,
                copy_report=report,
                message="Your gym was copied, but its workouts could not be copied",
            )
        )
    return Transition(
        replace(
            state,
            step=SetupStep.SUMMARY,
            plan_deferred=True,
            message="Your gym is ready. We couldn't generate your plan right now and will try again later.",
        )
    )


def _on_prerequisites_missing(state: FlowState, event: PrerequisitesMissing) -> Transition:
    return Transition(
        replace(
            state,
            step=SetupStep.COLLECTING_PROFILE,
            message=f"Missing profile fields: {', '.join(event.missing_fields)}",
        )
    )


def _on_finish(state: FlowState, event: Finish) -> Transition:
    return _finalize(state)


def _on_cancel(state: FlowState, event: Cancel) -> Transition:
    result = SetupResult(
        ResultStatus.CANCELLED, gym_id=state.in_progress_gym_id, message="Gym setup cancelled", step=state.step
    )
    return Transition(_back_to_idle(state, result, cancelled=True), _forced_reap(state), result)


def _on_step_failed(state: FlowState, event: StepFailed) -> Transition:
    result = SetupResult(ResultStatus.ERROR, gym_id=state.in_progress_gym_id, message=event.message, step=state.step)
    return Transition(_back_to_idle(state, result), _forced_reap(state), result)


_HANDLERS = {
    (SetupStep.IDLE, StartAddGym): _on_start,
    (SetupStep.NAMING, SubmitName): _on_submit_name,
    (SetupStep.NAMING, GymCreated): _on_gym_created,
    (SetupStep.NAMING, GymCreateFailed): _on_gym_create_failed,
    (SetupStep.CONFIGURING_OPTIONS, ChooseOption): _on_choose_option,
    (SetupStep.AI_UPLOAD, UploadPhotos): _on_upload_photos,
    (SetupStep.AI_UPLOAD, PhotosAnalyzed): _on_photos_analyzed,
    (SetupStep.COPYING, CopyApplied): _on_copy_applied,
    (SetupStep.APPLYING_DEFAULTS, DefaultsApplied): _on_defaults_applied,
    (SetupStep.SELECTING_EXERCISES, ConfirmExercises): _on_confirm_exercises,
    (SetupStep.SELECTING_EXERCISES, ExercisesLinked): _on_exercises_linked,
    (SetupStep.SELECTING_EXERCISES, ExerciseLinkFailed): _on_exercise_link_failed,
    (SetupStep.COLLECTING_PROFILE, CompleteProfile): _on_complete_profile,
    (SetupStep.GENERATING_PLAN, PlanGenerated): _on_plan_generated,
    (SetupStep.GENERATING_PLAN, GenerationDeferred): _on_generation_deferred,
    (SetupStep.GENERATING_PLAN, PrerequisitesMissing): _on_prerequisites_missing,
    (SetupStep.SUMMARY, Finish): _on_finish,
}


def transition(state: FlowState, event) -> Transition:
    """Apply ``event`` to ``state``. Raises InvalidTransition or ValidationError."""
    if isinstance(event, (Cancel, StepFailed)):
        if state.step == SetupStep.IDLE:
            raise InvalidTransition(state.step.value, type(event).__name__)
        if isinstance(event, Cancel):
            return _on_cancel(state, event)
        return _on_step_failed(state, event)

    handler = _HANDLERS.get((state.step, type(event)))
    if handler is None:
        raise InvalidTransition(state.step.value, type(event).__name__)
    return handler(state, event)
