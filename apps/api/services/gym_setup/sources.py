"""
Where a new gym's starting configuration comes from.

- photo analysis (external service detects equipment and exercises)
- a copy of another gym the owner already has
- the default equipment list
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

import requests

from core.config import settings
from core.logging import log_fields
from services.gym_setup.errors import ValidationError
from services.gym_setup.store import GymStore

logger = logging.getLogger(__name__)


class GymAnalysisError(Exception):
    """Photo analysis service failed or returned garbage."""


@dataclass
class AnalysisResult:
    equipment: List[Tuple[str, int]] = field(default_factory=list)
    exercise_ids: List[UUID] = field(default_factory=list)


class GymAnalysisClient:
    """HTTP client for the gym photo analysis service."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        api_key: Optional[str] = None,
        http: Optional[requests.Session] = None,
    ):
        self.url = url or settings.GYM_ANALYSIS_URL
        self.timeout_s = timeout_s or settings.GYM_ANALYSIS_TIMEOUT_S
        self.api_key = api_key if api_key is not None else settings.SERVICE_API_KEY
        self.http = http or requests.Session()

    def analyze(self, gym_id: UUID, images: Sequence[str]) -> AnalysisResult:
        """``images`` are base64 encoded photos."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            r = self.http.post(
                self.url,
                json={"gymId": str(gym_id), "images": list(images)},
                headers=headers,
                timeout=self.timeout_s,
            )
            r.raise_for_status()
            body = r.json()
        except requests.RequestException as e:
            raise GymAnalysisError(f"Gym photo analysis failed: {e}") from e
        except ValueError as e:
            raise GymAnalysisError("Gym photo analysis returned invalid JSON") from e

        try:
            equipment = [
                (str(item["type"]), int(item.get("quantity") or 1))
                for item in body.get("equipment") or []
            ]
            exercise_ids = [UUID(str(x)) for x in body.get("exerciseIds") or []]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise GymAnalysisError(f"Malformed gym analysis response: {e}") from e

        return AnalysisResult(equipment=equipment, exercise_ids=exercise_ids)


@dataclass
class CopyReport:
    source_gym_id: UUID
    equipment_copied: int = 0
    exercises_copied: int = 0
    workouts_copied: int = 0
    plan_error: Optional[str] = None

    @property
    def partial(self) -> bool:
        return self.plan_error is not None

    def summary(self) -> str:
        text = (
            f"Copied {self.equipment_copied} equipment item(s), {self.exercises_copied} exercise(s)"
            f" and {self.workouts_copied} workout(s)"
        )
        if self.plan_error:
            text += f". Workouts were not copied: {self.plan_error}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_gym_id": str(self.source_gym_id),
            "equipment_copied": self.equipment_copied,
            "exercises_copied": self.exercises_copied,
            "workouts_copied": self.workouts_copied,
            "plan_error": self.plan_error,
        }


class GymSetupSources:
    def __init__(
        self,
        store: GymStore,
        analysis_client: Optional[GymAnalysisClient] = None,
        default_equipment: Optional[List[str]] = None,
    ):
        self.store = store
        self.analysis_client = analysis_client or GymAnalysisClient()
        self.default_equipment = default_equipment if default_equipment is not None else settings.DEFAULT_GYM_EQUIPMENT

    def analyze_photos(self, gym_id: UUID, images: Sequence[str]) -> AnalysisResult:
        """Run photo analysis and store the detected equipment on the gym."""
        result = self.analysis_client.analyze(gym_id, images)
        stored = self.store.insert_equipment(gym_id, result.equipment)
        logger.info(
            f"Photo analysis for gym {gym_id}: {stored} equipment item(s), "
            f"{len(result.exercise_ids)} exercise candidate(s)",
            extra=log_fields(gym_id=str(gym_id)),
        )
        return result

    def apply_defaults(self, gym_id: UUID) -> int:
        return self.store.insert_equipment(gym_id, [(name, 1) for name in self.default_equipment])

    def copy_from_gym(self, owner_id: UUID, source_gym_id: UUID, target_gym_id: UUID) -> CopyReport:
        """Copy equipment and exercise pool. Plans are copied by the generation service afterwards."""
        if source_gym_id == target_gym_id:
            raise ValidationError("Choose a different gym to copy from", field="source_gym_id")
        equipment, exercises = self.store.copy_gym_configuration(owner_id, source_gym_id, target_gym_id)
        return CopyReport(source_gym_id=source_gym_id, equipment_copied=equipment, exercises_copied=exercises)
