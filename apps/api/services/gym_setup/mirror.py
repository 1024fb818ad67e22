"""
Local mirror synchronizer.

Copies a freshly generated plan tree from the remote store into the local
plan cache. Individual upsert failures never abort the pass; once every
item has been attempted, a single full resync of the owner's snapshot is
requested so the cache converges anyway.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from core.logging import log_fields
from services.gym_setup.errors import SyncFailure, TransientRemoteError
from services.gym_setup.local_cache import LocalPlanCache
from services.gym_setup.store import PlanTree

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_PARTIAL_FAILURE = "partial_failure"


@dataclass
class MirrorResult:
    owner_id: UUID
    plans_mirrored: int = 0
    exercises_mirrored: int = 0
    failures: List[str] = field(default_factory=list)
    resync_requested: bool = False

    @property
    def status(self) -> str:
        return STATUS_PARTIAL_FAILURE if self.failures else STATUS_OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": str(self.owner_id),
            "status": self.status,
            "plans_mirrored": self.plans_mirrored,
            "exercises_mirrored": self.exercises_mirrored,
            "failures": list(self.failures),
            "resync_requested": self.resync_requested,
        }


class LocalMirrorSynchronizer:
    def __init__(self, cache: LocalPlanCache, resync: Optional[Callable[[UUID], Any]] = None):
        """
        Args:
            cache: local plan cache to write into
            resync: called with the owner id after a pass with failures.
                Defaults to an inline cache.full_resync; the controller passes
                its background dispatcher instead.
        """
        self.cache = cache
        self.resync = resync or cache.full_resync

    def mirror(self, tree: PlanTree) -> MirrorResult:
        owner_id = tree.owner_id
        result = MirrorResult(owner_id=owner_id)
        main = tree.main_plan

        self._attempt(result, f"plan {main.id}", lambda: self.cache.upsert_plan(main), plan=True)

        for child in tree.child_plans:
            if child.parent_plan_id != main.id:
                child = replace(child, parent_plan_id=main.id)
            self._attempt(result, f"plan {child.id}", lambda c=child: self.cache.upsert_plan(c), plan=True)

        for entry in tree.exercises:
            self._attempt(
                result,
                f"plan exercise {entry.plan_id}/{entry.order_index}",
                lambda e=entry: self.cache.upsert_plan_exercise(e),
                plan=False,
            )

        if result.failures:
            logger.warning(
                f"Mirror of plan {main.id} finished with {len(result.failures)} failure(s); requesting full resync",
                extra=log_fields(owner_id=str(owner_id), main_plan_id=str(main.id)),
            )
            try:
                self.resync(owner_id)
                result.resync_requested = True
            except (SyncFailure, TransientRemoteError) as e:
                logger.error(f"Full resync for owner {owner_id} failed: {e}")

        return result

    def _attempt(self, result: MirrorResult, label: str, upsert: Callable[[], None], plan: bool) -> None:
        try:
            upsert()
        except SyncFailure as e:
            logger.warning(f"Local upsert of {label} failed: {e}")
            result.failures.append(label)
            return
        if plan:
            result.plans_mirrored += 1
        else:
            result.exercises_mirrored += 1
