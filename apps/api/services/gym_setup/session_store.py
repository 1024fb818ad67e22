"""
Per-owner wizard session storage.

Wizard state outlives a single HTTP request, so it is kept in Redis as JSON
with a TTL. When Redis is unavailable the state lives in a process-local
dict (single-worker deployments and tests).

The stored in-progress gym id doubles as the soft lock the background reap
task reads to decide which gym it must not touch.
"""

import json
import logging
from typing import Dict, Optional
from uuid import UUID

from redis.exceptions import RedisError

from core.cache import cache_key, get_redis_client
from core.config import settings
from services.gym_setup.flow import FlowState

logger = logging.getLogger(__name__)

_process_sessions: Dict[str, str] = {}


class SetupSessionStore:
    def __init__(self, redis_client=None, ttl_s: Optional[int] = None, fallback: Optional[Dict[str, str]] = None):
        self.redis = redis_client
        self.ttl_s = ttl_s or settings.SETUP_SESSION_TTL_S
        self.fallback = fallback if fallback is not None else _process_sessions

    @classmethod
    def default(cls) -> "SetupSessionStore":
        return cls(redis_client=get_redis_client())

    @staticmethod
    def _key(owner_id: UUID) -> str:
        return cache_key("gym_setup_session", owner_id)

    def load(self, owner_id: UUID) -> Optional[FlowState]:
        key = self._key(owner_id)
        raw = None
        if self.redis is not None:
            try:
                raw = self.redis.get(key)
            except RedisError as e:
                logger.warning(f"Setup session read failed for owner {owner_id}: {e}")
                raw = self.fallback.get(key)
        else:
            raw = self.fallback.get(key)

        if not raw:
            return None
        try:
            return FlowState.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Discarding unreadable setup session for owner {owner_id}: {e}")
            return None

    def save(self, state: FlowState) -> None:
        key = self._key(state.owner_id)
        raw = json.dumps(state.to_dict())
        if self.redis is not None:
            try:
                self.redis.setex(key, self.ttl_s, raw)
                return
            except RedisError as e:
                logger.warning(f"Setup session write failed for owner {state.owner_id}, keeping it in-process: {e}")
        self.fallback[key] = raw

    def clear(self, owner_id: UUID) -> None:
        key = self._key(owner_id)
        self.fallback.pop(key, None)
        if self.redis is not None:
            try:
                self.redis.delete(key)
            except RedisError as e:
                logger.warning(f"Setup session delete failed for owner {owner_id}: {e}")

    def in_progress_gym_id(self, owner_id: UUID) -> Optional[UUID]:
        """Gym currently being set up for ``owner_id``, if a wizard is open."""
        state = self.load(owner_id)
        if state is None or not state.active:
            return None
        return state.in_progress_gym_id
