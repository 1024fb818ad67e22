"""
Tests for the gym setup Celery tasks.

Tasks are run synchronously through ``.run``; get_db_sync is pointed at the
test session so everything is rolled back afterwards.
"""
from uuid import uuid4

import pytest

from celerybeat_schedule import beat_schedule
from core.database import build_engine
from models import Gym
from services.gym_setup.flow import FlowState, SetupStep
from services.gym_setup.generation import PlanGenerationCoordinator
from services.gym_setup.store import GymStore
from tasks.gym_setup_tasks import (
    reap_incomplete_gyms_task,
    resync_local_plan_cache_task,
    sweep_incomplete_gyms_task,
)


@pytest.fixture
def task_db(db_session, monkeypatch, sessions):
    monkeypatch.setattr(db_session, "close", lambda: None)
    monkeypatch.setattr("tasks.gym_setup_tasks.get_db_sync", lambda: db_session)
    monkeypatch.setattr("tasks.gym_setup_tasks.SetupSessionStore.default", lambda: sessions)
    return db_session


def _gym_ids(db_session, owner):
    return [g.id for g in db_session.query(Gym).filter(Gym.owner_id == owner.owner_id).order_by(Gym.created_at)]


# ---------------------------------------------------------------------------
# reap_incomplete_gyms
# ---------------------------------------------------------------------------

def test_reap_task_deletes_abandoned_gyms(task_db, profile, make_gym):
    keep = make_gym(profile, equipment=1, active=True)
    make_gym(profile)

    result = reap_incomplete_gyms_task.run(str(profile.owner_id))

    assert result["status"] == "success"
    assert result["deleted"] == 1
    assert result["protected_gym_id"] is None
    assert _gym_ids(task_db, profile) == [keep.id]


def test_reap_task_protects_gym_of_open_setup(task_db, sessions, profile, make_gym):
    keep = make_gym(profile, equipment=1, active=True)
    stale = make_gym(profile)
    in_setup = make_gym(profile)
    sessions.save(
        FlowState(
            owner_id=profile.owner_id,
            step=SetupStep.CONFIGURING_OPTIONS,
            session_id=uuid4(),
            in_progress_gym_id=in_setup.id,
        )
    )

    result = reap_incomplete_gyms_task.run(str(profile.owner_id))

    assert result["deleted"] == 1
    assert result["protected_gym_id"] == str(in_setup.id)
    assert _gym_ids(task_db, profile) == [keep.id, in_setup.id]
    assert stale.id not in _gym_ids(task_db, profile)


def test_reap_task_protects_gym_created_while_it_runs(task_db, sessions, profile, make_gym, monkeypatch):
    keep = make_gym(profile, equipment=1, active=True)
    session_id = uuid4()
    sessions.save(FlowState(owner_id=profile.owner_id, step=SetupStep.NAMING, session_id=session_id))
    real_list_gyms = GymStore.list_gyms
    created = {}

    def list_after_wizard_created_gym(self, owner_id):
        # submit_name lands between the task starting and the gyms being listed.
        if not created:
            created["gym"] = make_gym(profile, "New")
            sessions.save(
                FlowState(
                    owner_id=profile.owner_id,
                    step=SetupStep.CONFIGURING_OPTIONS,
                    session_id=session_id,
                    in_progress_gym_id=created["gym"].id,
                )
            )
        return real_list_gyms(self, owner_id)

    monkeypatch.setattr(GymStore, "list_gyms", list_after_wizard_created_gym)

    result = reap_incomplete_gyms_task.run(str(profile.owner_id))

    assert result["deleted"] == 0
    assert result["protected_gym_id"] == str(created["gym"].id)
    assert _gym_ids(task_db, profile) == [keep.id, created["gym"].id]


def test_reap_task_skips_when_lock_is_held(task_db, profile, make_gym, monkeypatch):
    make_gym(profile, equipment=1)
    make_gym(profile)
    monkeypatch.setattr("tasks.gym_setup_tasks.acquire_lock", lambda key, ttl_s: False)

    result = reap_incomplete_gyms_task.run(str(profile.owner_id))

    assert result == {"status": "skipped", "reason": "lock_held"}
    assert len(_gym_ids(task_db, profile)) == 2


def test_reap_task_releases_lock(task_db, profile, make_gym, monkeypatch):
    released = []
    monkeypatch.setattr("tasks.gym_setup_tasks.release_lock", released.append)
    make_gym(profile)

    reap_incomplete_gyms_task.run(str(profile.owner_id))

    assert released == [f"gym_reap_lock:{profile.owner_id}"]


# ---------------------------------------------------------------------------
# resync_local_plan_cache
# ---------------------------------------------------------------------------

def test_resync_task_rebuilds_local_cache(task_db, store, profile, make_gym, generation_client, monkeypatch):
    engine = build_engine("sqlite://")
    monkeypatch.setattr("services.gym_setup.local_cache.get_local_cache_engine", lambda: engine)
    gym = make_gym(profile)
    PlanGenerationCoordinator(store, generation_client).generate(profile.owner_id, gym.id)

    result = resync_local_plan_cache_task.run(str(profile.owner_id))

    assert result == {"status": "success", "owner_id": str(profile.owner_id), "plans": 3}


# ---------------------------------------------------------------------------
# sweep_incomplete_gyms
# ---------------------------------------------------------------------------

def test_sweep_enqueues_owners_with_several_gyms(task_db, profile, make_profile, make_gym, monkeypatch):
    single = make_profile()
    make_gym(single)
    make_gym(profile)
    make_gym(profile)
    enqueued = []
    monkeypatch.setattr(reap_incomplete_gyms_task, "delay", enqueued.append)

    result = sweep_incomplete_gyms_task.run()

    assert str(profile.owner_id) in enqueued
    assert str(single.owner_id) not in enqueued
    assert result["enqueued"] == result["owners"] == len(enqueued)


def test_sweep_survives_broker_outage(task_db, profile, make_gym, monkeypatch):
    make_gym(profile)
    make_gym(profile)

    def broken(owner_id):
        raise ConnectionError("broker unavailable")

    monkeypatch.setattr(reap_incomplete_gyms_task, "delay", broken)

    result = sweep_incomplete_gyms_task.run()

    assert result["status"] == "success"
    assert result["enqueued"] == 0


def test_sweep_is_scheduled():
    assert beat_schedule["sweep-incomplete-gyms"]["task"] == "tasks.sweep_incomplete_gyms"
