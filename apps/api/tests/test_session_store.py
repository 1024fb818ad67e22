"""Tests for SetupSessionStore (Redis with in-process fallback)."""
import json
from uuid import uuid4

from redis.exceptions import ConnectionError as RedisConnectionError

from services.gym_setup.flow import FlowState, SetupStep
from services.gym_setup.session_store import SetupSessionStore


class FakeRedis:
    """Minimal in-memory Redis mock for unit tests."""

    def __init__(self):
        self._store: dict = {}
        self._ttls: dict = {}

    def get(self, key):
        return self._store.get(key)

    def setex(self, key, ttl, value):
        self._store[key] = value
        self._ttls[key] = ttl

    def delete(self, key):
        self._store.pop(key, None)
        self._ttls.pop(key, None)


class BrokenRedis:
    def get(self, key):
        raise RedisConnectionError("down")

    def setex(self, key, ttl, value):
        raise RedisConnectionError("down")

    def delete(self, key):
        raise RedisConnectionError("down")


def _state(**fields):
    return FlowState(owner_id=fields.pop("owner_id", uuid4()), **fields)


def test_save_and_load_through_redis():
    redis = FakeRedis()
    sessions = SetupSessionStore(redis_client=redis, ttl_s=600, fallback={})
    state = _state(step=SetupStep.CONFIGURING_OPTIONS, in_progress_gym_id=uuid4(), gym_name="Garage")

    sessions.save(state)

    assert sessions.load(state.owner_id) == state
    key = f"gym_setup_session:{state.owner_id}"
    assert redis._ttls[key] == 600
    assert json.loads(redis._store[key])["step"] == "configuring_options"


def test_unknown_owner_has_no_session():
    assert SetupSessionStore(redis_client=FakeRedis(), fallback={}).load(uuid4()) is None


def test_redis_outage_falls_back_to_process_memory():
    fallback = {}
    sessions = SetupSessionStore(redis_client=BrokenRedis(), fallback=fallback)
    state = _state(step=SetupStep.NAMING)

    sessions.save(state)

    assert len(fallback) == 1
    assert sessions.load(state.owner_id) == state

    sessions.clear(state.owner_id)
    assert sessions.load(state.owner_id) is None


def test_unreadable_session_is_discarded():
    owner = uuid4()
    sessions = SetupSessionStore(redis_client=None, fallback={f"gym_setup_session:{owner}": "{not json"})

    assert sessions.load(owner) is None


def test_in_progress_gym_only_while_wizard_is_open():
    sessions = SetupSessionStore(redis_client=None, fallback={})
    gym_id = uuid4()
    open_state = _state(step=SetupStep.SELECTING_EXERCISES, in_progress_gym_id=gym_id)
    sessions.save(open_state)

    assert sessions.in_progress_gym_id(open_state.owner_id) == gym_id

    sessions.save(_state(owner_id=open_state.owner_id, step=SetupStep.IDLE, in_progress_gym_id=gym_id))
    assert sessions.in_progress_gym_id(open_state.owner_id) is None
