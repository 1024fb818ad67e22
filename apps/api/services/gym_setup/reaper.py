"""
Incomplete gym reaper.

Deletes gyms that never got any equipment, exercises or plans (abandoned
setups) while holding the lifecycle invariants:

- a user always keeps at least one gym;
- the active gym pointer is moved before its gym is deleted;
- the gym currently being set up is never deleted by a background pass;
- while a setup is in progress at least two gyms remain, so the gym
  switcher never collapses to a single entry.

Decisions are recomputed from a fresh read on every pass, so two passes
running at the same time can only ever delete down to the same floor.
A pass deletes either its whole candidate set or nothing.
"""

import logging
from typing import Callable, List, Optional
from uuid import UUID

from core.logging import log_fields
from models import Gym
from services.gym_setup.active_gym import ActiveGymResolver
from services.gym_setup.completeness import GymCompletenessChecker
from services.gym_setup.errors import TransientRemoteError
from services.gym_setup.store import GymStore

logger = logging.getLogger(__name__)


class IncompleteGymReaper:
    def __init__(
        self,
        store: GymStore,
        checker: Optional[GymCompletenessChecker] = None,
        resolver: Optional[ActiveGymResolver] = None,
    ):
        self.store = store
        self.checker = checker or GymCompletenessChecker(store)
        self.resolver = resolver or ActiveGymResolver(store, self.checker)

    def reap(
        self,
        owner_id: UUID,
        *,
        force_gym_id: Optional[UUID] = None,
        protected_gym_id: Optional[UUID] = None,
        protected_gym_source: Optional[Callable[[], Optional[UUID]]] = None,
        allow_last_gym: bool = False,
    ) -> int:
        """
        Delete incomplete gyms for ``owner_id`` and return how many were deleted.

        ``force_gym_id`` limits the pass to that one gym and ignores the
        in-setup protection (used when a setup is cancelled or fails).
        ``allow_last_gym`` lets a forced pass delete the owner's only gym; the
        wizard sets it only when the user had no gym before setup started.

        ``protected_gym_source`` is called after the gyms are listed, so a gym
        created by a setup that started meanwhile is already protected when it
        shows up in the list.
        """
        try:
            gyms = self.store.list_gyms(owner_id)
            profile = self.store.get_profile(owner_id)
        except TransientRemoteError as e:
            logger.warning(f"Reap skipped for owner {owner_id}: could not load gyms: {e}")
            return 0

        if not gyms:
            return 0
        if protected_gym_source is not None:
            protected_gym_id = protected_gym_source()
        active_gym_id = profile.active_gym_id if profile else None

        if force_gym_id is not None:
            return self._reap_forced(owner_id, gyms, force_gym_id, active_gym_id, allow_last_gym)

        incomplete = [g for g in gyms if self.checker.is_incomplete(g.id)]
        if not incomplete:
            return 0

        if len(gyms) == 1:
            logger.info(
                f"Preserving only gym {gyms[0].id} of owner {owner_id} although it is incomplete",
                extra=log_fields(owner_id=str(owner_id), gym_id=str(gyms[0].id)),
            )
            return 0

        if len(incomplete) == len(gyms):
            # Nothing is configured: keep the oldest gym.
            doomed = [g for g in gyms[1:] if g.id != protected_gym_id]
        else:
            doomed = [g for g in incomplete if g.id != protected_gym_id]

        if not doomed:
            return 0

        required_remaining = 2 if protected_gym_id is not None else 1
        remaining = len(gyms) - len(doomed)
        if remaining < required_remaining:
            logger.info(
                f"Reap cancelled for owner {owner_id}: deleting {len(doomed)} gym(s) would leave "
                f"{remaining}, need {required_remaining}",
                extra=log_fields(owner_id=str(owner_id), protected_gym_id=str(protected_gym_id) if protected_gym_id else None),
            )
            return 0

        doomed = self._move_active_gym_off(owner_id, doomed, active_gym_id)
        return self._delete_all(owner_id, doomed)

    def _reap_forced(
        self,
        owner_id: UUID,
        gyms: List[Gym],
        gym_id: UUID,
        active_gym_id: Optional[UUID],
        allow_last_gym: bool,
    ) -> int:
        target = next((g for g in gyms if g.id == gym_id), None)
        if target is None:
            return 0

        if not self.checker.is_incomplete(target.id):
            logger.info(
                f"Forced reap kept gym {gym_id}: it already has equipment, exercises or plans",
                extra=log_fields(owner_id=str(owner_id), gym_id=str(gym_id)),
            )
            return 0

        if len(gyms) == 1 and not allow_last_gym:
            logger.info(
                f"Forced reap kept gym {gym_id}: it is the only gym of owner {owner_id}",
                extra=log_fields(owner_id=str(owner_id), gym_id=str(gym_id)),
            )
            return 0

        if active_gym_id == target.id:
            try:
                replacement = self.resolver.resolve_replacement(owner_id, target.id)
                if replacement is None:
                    # Only reachable for a first gym being abandoned.
                    self.store.update_profile(owner_id, active_gym_id=None)
            except TransientRemoteError as e:
                logger.warning(f"Forced reap kept active gym {gym_id}: could not move active gym: {e}")
                return 0

        return self._delete_all(owner_id, [target])

    def _move_active_gym_off(
        self, owner_id: UUID, doomed: List[Gym], active_gym_id: Optional[UUID]
    ) -> List[Gym]:
        """Reassign the active gym if it is about to be deleted; drop it from the set if that fails."""
        if active_gym_id is None or active_gym_id not in {g.id for g in doomed}:
            return doomed

        try:
            replacement = self.resolver.resolve_replacement(
                owner_id, active_gym_id, doomed_gym_ids=[g.id for g in doomed]
            )
        except TransientRemoteError as e:
            logger.warning(f"Could not move active gym {active_gym_id} off before reap: {e}")
            replacement = None

        if replacement is None:
            return [g for g in doomed if g.id != active_gym_id]
        return doomed

    def _delete_all(self, owner_id: UUID, doomed: List[Gym]) -> int:
        deleted = 0
        for gym in doomed:
            gym_id, gym_name = gym.id, gym.name
            try:
                self.store.delete_gym(gym_id)
            except TransientRemoteError as e:
                logger.warning(
                    f"Failed to delete incomplete gym {gym_id}: {e}",
                    extra=log_fields(owner_id=str(owner_id), gym_id=str(gym_id)),
                )
                continue
            deleted += 1
            logger.info(
                f"Deleted incomplete gym '{gym_name}' ({gym_id}) of owner {owner_id}",
                extra=log_fields(owner_id=str(owner_id), gym_id=str(gym_id)),
            )
        return deleted
