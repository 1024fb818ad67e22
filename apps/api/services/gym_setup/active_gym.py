"""
Active gym resolution.

Picks the gym a user should be switched to when their active gym is about
to disappear. The new pointer is persisted before the caller deletes
anything, so active_gym_id never references a gym mid-deletion.
"""

import logging
from typing import Iterable, Optional
from uuid import UUID

from core.logging import log_fields
from services.gym_setup.completeness import GymCompletenessChecker
from services.gym_setup.store import GymStore

logger = logging.getLogger(__name__)


class ActiveGymResolver:
    def __init__(self, store: GymStore, checker: Optional[GymCompletenessChecker] = None):
        self.store = store
        self.checker = checker or GymCompletenessChecker(store)

    def pick_replacement(
        self, owner_id: UUID, excluded_gym_id: UUID, doomed_gym_ids: Iterable[UUID] = ()
    ) -> Optional[UUID]:
        """
        Preference: oldest complete gym, then oldest incomplete gym, else None.

        Gyms in ``doomed_gym_ids`` are about to be deleted by the caller and are
        never picked, whatever their completeness re-check says.
        """
        skip = {excluded_gym_id, *doomed_gym_ids}
        others = [g for g in self.store.list_gyms(owner_id) if g.id not in skip]
        if not others:
            return None
        for gym in others:
            if not self.checker.is_incomplete(gym.id):
                return gym.id
        return others[0].id

    def resolve_replacement(
        self, owner_id: UUID, excluded_gym_id: UUID, doomed_gym_ids: Iterable[UUID] = ()
    ) -> Optional[UUID]:
        """
        Choose and persist a new active gym other than ``excluded_gym_id``.

        Returns None when no surviving gym exists; the caller must then refuse
        the deletion that asked for a replacement.
        """
        replacement = self.pick_replacement(owner_id, excluded_gym_id, doomed_gym_ids)
        if replacement is None:
            logger.info(
                f"No replacement active gym for owner {owner_id}: no gym other than {excluded_gym_id} survives",
                extra=log_fields(owner_id=str(owner_id), gym_id=str(excluded_gym_id)),
            )
            return None

        self.store.update_profile(owner_id, active_gym_id=replacement)
        logger.info(
            f"Active gym for owner {owner_id} moved from {excluded_gym_id} to {replacement}",
            extra=log_fields(owner_id=str(owner_id), gym_id=str(replacement)),
        )
        return replacement
