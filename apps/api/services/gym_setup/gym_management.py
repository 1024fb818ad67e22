"""
Explicit gym management actions (delete, switch, rename).

These are the user-initiated counterparts of the reaper: the same
last-gym and active-gym rules apply, but completeness does not matter.
"""

import logging
from uuid import UUID

from core.logging import log_fields
from services.gym_setup.active_gym import ActiveGymResolver
from services.gym_setup.errors import LastGymError, ValidationError
from services.gym_setup.store import GymStore

logger = logging.getLogger(__name__)


class GymManager:
    def __init__(self, store: GymStore, resolver: ActiveGymResolver = None):
        self.store = store
        self.resolver = resolver or ActiveGymResolver(store)

    def delete_gym(self, owner_id: UUID, gym_id: UUID) -> UUID:
        """Delete one of the owner's gyms. Returns the active gym id afterwards."""
        gym = self.store.get_gym(owner_id, gym_id)
        if self.store.count_gyms(owner_id) <= 1:
            raise LastGymError("You must have at least one gym. Add another gym before deleting this one.")

        profile = self.store.get_profile(owner_id)
        active_gym_id = profile.active_gym_id if profile else None
        if active_gym_id is None or active_gym_id == gym.id:
            # Also covers a dangling/null pointer: there is always another gym here.
            active_gym_id = self.resolver.resolve_replacement(owner_id, gym.id)

        self.store.delete_gym(gym.id)
        logger.info(
            f"Owner {owner_id} deleted gym {gym_id}",
            extra=log_fields(owner_id=str(owner_id), gym_id=str(gym_id)),
        )
        return active_gym_id

    def switch_active_gym(self, owner_id: UUID, gym_id: UUID) -> UUID:
        gym = self.store.get_gym(owner_id, gym_id)
        self.store.update_profile(owner_id, active_gym_id=gym.id)
        return gym.id

    def rename_gym(self, owner_id: UUID, gym_id: UUID, name: str):
        name = (name or "").strip()
        if not name:
            raise ValidationError("Gym name cannot be empty", field="name")
        return self.store.rename_gym(owner_id, gym_id, name)
