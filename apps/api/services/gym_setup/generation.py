"""
Plan generation.

PlanGenerationClient speaks HTTP to the plan generation service.
PlanGenerationCoordinator checks profile prerequisites, calls the service,
classifies the outcome and loads the generated plan tree from the remote
store so it can be mirrored locally.

Outcomes:
- success: the service returned a mainPlanId, the tree is loaded.
- soft success: a copy request whose source gym has no workouts. Equipment
  and exercises were already copied, so the setup continues without plans.
- PrerequisiteMissing: programme type / session length not set.
- GenerationFailure: anything else (HTTP error, timeout, network). In copy
  mode this is a PartialCopyFailure: the gym itself was already copied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import requests

from core.config import settings
from core.logging import log_fields
from services.gym_setup.constants import (
    NO_WORKOUTS_TO_COPY,
    NO_WORKOUTS_TO_COPY_MESSAGES,
    GenerationMode,
    GenerationStatus,
    ProgramType,
    SessionLength,
)
from services.gym_setup.errors import GenerationFailure, PartialCopyFailure, PrerequisiteMissing, TransientRemoteError
from services.gym_setup.store import GymStore, PlanTree

logger = logging.getLogger(__name__)

PROGRAM_TYPES = {p.value for p in ProgramType}
SESSION_LENGTHS = {s.value for s in SessionLength}


class GenerationServiceError(Exception):
    """Non-success answer (or no answer) from the generation service."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


@dataclass
class GenerationResponse:
    main_plan_id: UUID
    child_plans: List[Dict[str, Any]] = field(default_factory=list)
    exercise_count: int = 0


class PlanGenerationClient:
    """HTTP client for the plan generation service."""

    def __init__(
        self,
        generate_url: Optional[str] = None,
        copy_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        api_key: Optional[str] = None,
        http: Optional[requests.Session] = None,
    ):
        self.generate_url = generate_url or settings.PLAN_GENERATION_URL
        self.copy_url = copy_url or settings.PLAN_COPY_URL
        self.timeout_s = timeout_s or settings.PLAN_GENERATION_TIMEOUT_S
        self.api_key = api_key if api_key is not None else settings.SERVICE_API_KEY
        self.http = http or requests.Session()

    def generate(self, owner_id: UUID, gym_id: UUID, program_type: str, session_length: str) -> GenerationResponse:
        return self._post(
            self.generate_url,
            {
                "ownerId": str(owner_id),
                "gymId": str(gym_id),
                "programType": program_type,
                "sessionLength": session_length,
            },
        )

    def copy(
        self, owner_id: UUID, source_gym_id: UUID, target_gym_id: UUID, program_type: str, session_length: str
    ) -> GenerationResponse:
        return self._post(
            self.copy_url,
            {
                "ownerId": str(owner_id),
                "sourceGymId": str(source_gym_id),
                "gymId": str(target_gym_id),
                "programType": program_type,
                "sessionLength": session_length,
            },
        )

    def _post(self, url: str, payload: Dict[str, Any]) -> GenerationResponse:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            r = self.http.post(url, json=payload, headers=headers, timeout=self.timeout_s)
        except requests.Timeout as e:
            raise GenerationServiceError(f"Plan generation timed out after {self.timeout_s}s", code="TIMEOUT") from e
        except requests.RequestException as e:
            raise GenerationServiceError(f"Plan generation request failed: {e}", code="NETWORK") from e

        try:
            body = r.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if r.status_code >= 400 or body.get("error"):
            raise GenerationServiceError(
                str(body.get("error") or f"Plan generation failed with status {r.status_code}"),
                code=body.get("code"),
                status_code=r.status_code,
            )

        main_plan_id = body.get("mainPlanId")
        if not main_plan_id:
            raise GenerationServiceError("Plan generation response is missing mainPlanId", code="BAD_RESPONSE")

        try:
            child_plans = [
                {"id": UUID(str(c["id"])), "name": c.get("name")}
                for c in body.get("childPlans") or []
            ]
            return GenerationResponse(
                main_plan_id=UUID(str(main_plan_id)),
                child_plans=child_plans,
                exercise_count=int(body.get("exerciseCount") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GenerationServiceError(f"Malformed plan generation response: {e}", code="BAD_RESPONSE") from e


@dataclass
class GenerationResult:
    gym_id: UUID
    main_plan_id: Optional[UUID] = None
    child_plans: List[Dict[str, Any]] = field(default_factory=list)
    exercise_count: int = 0
    plan_tree: Optional[PlanTree] = None
    # Set when a copy found nothing to copy (soft success).
    note: Optional[str] = None

    @property
    def has_plans(self) -> bool:
        return self.main_plan_id is not None


def is_no_workouts_to_copy(error: GenerationServiceError) -> bool:
    if error.code == NO_WORKOUTS_TO_COPY:
        return True
    message = str(error).lower()
    if any(fragment in message for fragment in NO_WORKOUTS_TO_COPY_MESSAGES):
        # The message text is not a stable contract; keep this until the
        # service always sends NO_WORKOUTS_TO_COPY.
        logger.warning(f"Matched 'no workouts to copy' by message text: {error}")
        return True
    return False


class PlanGenerationCoordinator:
    def __init__(self, store: GymStore, client: Optional[PlanGenerationClient] = None):
        self.store = store
        self.client = client or PlanGenerationClient()

    def missing_prerequisites(self, owner_id: UUID) -> List[str]:
        profile = self.store.get_profile(owner_id)
        missing = []
        if profile is None or profile.program_type not in PROGRAM_TYPES:
            missing.append("program_type")
        if profile is None or profile.preferred_session_length not in SESSION_LENGTHS:
            missing.append("preferred_session_length")
        return missing

    def _resolve_prerequisites(
        self, owner_id: UUID, program_type: Optional[str], session_length: Optional[str]
    ) -> Tuple[str, str]:
        if program_type is None or session_length is None:
            profile = self.store.get_profile(owner_id)
            if profile is not None:
                program_type = program_type or profile.program_type
                session_length = session_length or profile.preferred_session_length

        missing = []
        if program_type not in PROGRAM_TYPES:
            missing.append("program_type")
        if session_length not in SESSION_LENGTHS:
            missing.append("preferred_session_length")
        if missing:
            raise PrerequisiteMissing(missing)
        return program_type, session_length

    def _record_status(self, owner_id: UUID, status: GenerationStatus, error: Optional[str] = None, **extra) -> None:
        try:
            self.store.update_profile(
                owner_id, plan_generation_status=status.value, plan_generation_error=error, **extra
            )
        except TransientRemoteError as e:
            logger.warning(f"Could not record plan generation status '{status.value}' for owner {owner_id}: {e}")

    def generate(
        self,
        owner_id: UUID,
        gym_id: UUID,
        program_type: Optional[str] = None,
        session_length: Optional[str] = None,
        *,
        mode: GenerationMode = GenerationMode.GENERATE,
        source_gym_id: Optional[UUID] = None,
        make_active: bool = False,
    ) -> GenerationResult:
        program_type, session_length = self._resolve_prerequisites(owner_id, program_type, session_length)
        if mode == GenerationMode.COPY and source_gym_id is None:
            raise ValueError("source_gym_id is required to copy plans")

        self._record_status(owner_id, GenerationStatus.IN_PROGRESS)
        fields = log_fields(owner_id=str(owner_id), gym_id=str(gym_id), mode=mode.value)

        try:
            if mode == GenerationMode.COPY:
                response = self.client.copy(owner_id, source_gym_id, gym_id, program_type, session_length)
            else:
                response = self.client.generate(owner_id, gym_id, program_type, session_length)
        except GenerationServiceError as e:
            if mode == GenerationMode.COPY and is_no_workouts_to_copy(e):
                logger.info(f"Source gym {source_gym_id} has no workouts to copy; continuing without plans", extra=fields)
                self._record_status(owner_id, GenerationStatus.COMPLETED)
                return GenerationResult(gym_id=gym_id, note="The source gym has no workouts to copy")
            logger.warning(f"Plan generation failed for gym {gym_id}: {e}", extra=fields)
            self._record_status(owner_id, GenerationStatus.FAILED, error=str(e))
            error_cls = PartialCopyFailure if mode == GenerationMode.COPY else GenerationFailure
            raise error_cls(str(e), code=e.code) from e

        tree = self.store.load_plan_tree(owner_id, response.main_plan_id, gym_id)
        if tree is None:
            logger.warning(
                f"Generated main plan {response.main_plan_id} is not visible in the store yet", extra=fields
            )

        extra = {}
        profile = self.store.get_profile(owner_id)
        if make_active or profile is None or profile.active_gym_id in (None, gym_id):
            extra["active_plan_id"] = response.main_plan_id
        self._record_status(owner_id, GenerationStatus.COMPLETED, **extra)

        logger.info(
            f"Generated plan {response.main_plan_id} with {len(response.child_plans)} workouts for gym {gym_id}",
            extra=fields,
        )
        return GenerationResult(
            gym_id=gym_id,
            main_plan_id=response.main_plan_id,
            child_plans=response.child_plans,
            exercise_count=response.exercise_count,
            plan_tree=tree,
        )
