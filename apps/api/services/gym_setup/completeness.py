"""
Gym completeness.

A gym is incomplete when it has no equipment, no exercise-pool entries and
no workout plans. Each signal is checked independently; a check that errors
counts as "present" so a flaky read can never mark a configured gym for
deletion.
"""

import logging
from typing import Callable, List, Tuple
from uuid import UUID

from core.logging import log_fields
from services.gym_setup.errors import TransientRemoteError
from services.gym_setup.store import GymStore

logger = logging.getLogger(__name__)


class GymCompletenessChecker:
    def __init__(self, store: GymStore):
        self.store = store

    def _signals(self) -> List[Tuple[str, Callable[[UUID], bool]]]:
        return [
            ("equipment", self.store.has_equipment),
            ("exercise_pool", self.store.has_exercise_pool),
            ("workout_plans", self.store.has_workout_plans),
        ]

    def is_incomplete(self, gym_id: UUID) -> bool:
        for name, check in self._signals():
            try:
                present = check(gym_id)
            except TransientRemoteError as e:
                logger.warning(
                    f"Completeness check '{name}' failed for gym {gym_id}; treating as present: {e}",
                    extra=log_fields(gym_id=str(gym_id), signal=name),
                )
                return False
            if present:
                return False
        return True
