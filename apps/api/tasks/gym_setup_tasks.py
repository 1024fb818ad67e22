"""
Gym setup background tasks.

- reap_incomplete_gyms: delete abandoned gyms for one owner. Enqueued when a
  setup starts and by the periodic sweep. The gym of a setup that is open
  *when the task runs* is protected, not the one open at enqueue time.
- resync_local_plan_cache: replace an owner's local plan cache with the
  remote snapshot after a mirror pass had failures.
- sweep_incomplete_gyms: periodic fan-out of reap_incomplete_gyms.
"""

import logging
from typing import Dict, Optional
from uuid import UUID

from celery import Task
from sqlalchemy import func
from sqlalchemy.orm import Session

from core.cache import acquire_lock, cache_key, release_lock
from core.database import get_db_sync
from models import Gym
from services.gym_setup.errors import SyncFailure, TransientRemoteError
from services.gym_setup.local_cache import LocalPlanCache
from services.gym_setup.reaper import IncompleteGymReaper
from services.gym_setup.session_store import SetupSessionStore
from services.gym_setup.store import GymStore
from tasks import celery_app

logger = logging.getLogger(__name__)

REAP_LOCK_TTL_S = 120


@celery_app.task(name="tasks.reap_incomplete_gyms", bind=True)
def reap_incomplete_gyms_task(self: Task, owner_id: str) -> Dict:
    """Reap incomplete gyms of one owner, protecting any gym mid-setup."""
    owner = UUID(owner_id)
    lock = cache_key("gym_reap_lock", owner)
    if not acquire_lock(lock, REAP_LOCK_TTL_S):
        logger.info(f"Gym reap skipped (lock held): {owner_id}")
        return {"status": "skipped", "reason": "lock_held"}

    db: Optional[Session] = None
    try:
        db = get_db_sync()
        store = GymStore(db)
        sessions = SetupSessionStore.default()
        protected: Dict[str, Optional[UUID]] = {"gym_id": None}

        def live_protected_gym() -> Optional[UUID]:
            # Read after the gyms are listed; see IncompleteGymReaper.reap.
            protected["gym_id"] = sessions.in_progress_gym_id(owner)
            return protected["gym_id"]

        deleted = IncompleteGymReaper(store).reap(owner, protected_gym_source=live_protected_gym)
        store.commit()
        return {
            "status": "success",
            "owner_id": owner_id,
            "deleted": deleted,
            "protected_gym_id": str(protected["gym_id"]) if protected["gym_id"] else None,
        }
    except TransientRemoteError as e:
        logger.error(f"Gym reap failed for owner {owner_id}: {e}")
        if db is not None:
            db.rollback()
        return {"status": "error", "owner_id": owner_id, "message": str(e)}
    finally:
        if db is not None:
            db.close()
        release_lock(lock)


@celery_app.task(
    name="tasks.resync_local_plan_cache",
    bind=True,
    autoretry_for=(SyncFailure, TransientRemoteError),
    retry_backoff=True,
    retry_backoff_max=300,
    max_retries=3,
)
def resync_local_plan_cache_task(self: Task, owner_id: str) -> Dict:
    """Rebuild the owner's local plan cache from the remote store."""
    db: Optional[Session] = None
    try:
        db = get_db_sync()
        store = GymStore(db)
        cache = LocalPlanCache(snapshot_source=store.load_plan_snapshot)
        plans = cache.full_resync(UUID(owner_id))
        return {"status": "success", "owner_id": owner_id, "plans": plans}
    finally:
        if db is not None:
            db.close()


@celery_app.task(name="tasks.sweep_incomplete_gyms")
def sweep_incomplete_gyms_task() -> Dict:
    """Enqueue a reap for every owner that has more than one gym."""
    db = get_db_sync()
    try:
        owner_ids = [
            row.owner_id
            for row in db.query(Gym.owner_id).group_by(Gym.owner_id).having(func.count(Gym.id) > 1).all()
        ]
    finally:
        db.close()

    enqueued = 0
    for owner_id in owner_ids:
        try:
            reap_incomplete_gyms_task.delay(str(owner_id))
            enqueued += 1
        except Exception as e:
            logger.error(f"Failed to enqueue gym reap for owner {owner_id}: {e}")

    logger.info(f"Incomplete gym sweep enqueued {enqueued}/{len(owner_ids)} owners")
    return {"status": "success", "owners": len(owner_ids), "enqueued": enqueued}
