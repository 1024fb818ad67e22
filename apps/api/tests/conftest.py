"""
Pytest configuration and fixtures

IMPORTANT: All tests use transactional rollback isolation.
Nothing created during tests persists to the database.

The suite runs against a throwaway SQLite file migrated to Alembic head.
Redis is disabled for every test, so wizard sessions live in the
in-process fallback and locks fail open.
"""
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List
from uuid import uuid4

import pytest

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

_TEST_DB_DIR = tempfile.mkdtemp(prefix="gym_setup_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DB_DIR}/gym_setup_test.db"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-gym-setup-suite-0123456789")
os.environ.setdefault("LOCAL_CACHE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")


@pytest.fixture(scope="session", autouse=True)
def _ensure_db_schema_is_at_head():
    """Bring the test database to the latest Alembic revision."""
    try:
        from alembic import command
        from alembic.config import Config

        api_root = Path(__file__).resolve().parents[1]
        cfg = Config(str(api_root / "alembic.ini"))
        cfg.set_main_option("script_location", str(api_root / "alembic"))
        command.upgrade(cfg, "head")
    except Exception as e:
        # Tests should fail loudly if migrations cannot be applied.
        raise RuntimeError(f"Failed to upgrade DB to Alembic head: {e}") from e


from sqlalchemy.orm import Session

from core.database import build_engine, engine
from models import Gym, GymEquipment, GymExercise, PlanExercise, Profile, WorkoutPlan
from services.gym_setup.constants import PROGRAM_TEMPLATE_NAMES
from services.gym_setup.controller import BackgroundDispatcher, FlowController
from services.gym_setup.generation import GenerationResponse, PlanGenerationCoordinator
from services.gym_setup.local_cache import LocalPlanCache
from services.gym_setup.mirror import LocalMirrorSynchronizer
from services.gym_setup.session_store import SetupSessionStore
from services.gym_setup.sources import AnalysisResult, GymSetupSources
from services.gym_setup.store import GymStore

T0 = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)

DEFAULT_EQUIPMENT = ["barbell", "dumbbells", "adjustable_bench"]


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch):
    monkeypatch.setattr("core.cache.get_redis_client", lambda: None)
    monkeypatch.setattr("services.gym_setup.session_store.get_redis_client", lambda: None)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a database session with transactional rollback.

    ``commit()`` inside application code only releases a savepoint; the
    outer transaction is rolled back when the test ends.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint", expire_on_commit=False)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def store(db_session):
    return GymStore(db_session)


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------

@pytest.fixture
def make_profile(db_session):
    def _make(**fields):
        profile = Profile(owner_id=fields.pop("owner_id", None) or uuid4(), **fields)
        db_session.add(profile)
        db_session.flush()
        return profile

    return _make


@pytest.fixture
def profile(make_profile):
    """Owner with a complete programme profile and no gyms yet."""
    return make_profile(program_type="ulul", preferred_session_length="45-60")


@pytest.fixture
def make_gym(db_session):
    """
    Create a gym with an explicit creation time (one minute apart per call,
    so "oldest" is deterministic) and optional configuration.
    """
    created = {"n": 0}

    def _make(owner, name=None, *, equipment=0, exercises=0, plans=0, active=False):
        created["n"] += 1
        n = created["n"]
        gym = Gym(owner_id=owner.owner_id, name=name or f"Gym {n}", created_at=T0 + timedelta(minutes=n))
        db_session.add(gym)
        db_session.flush()

        for i in range(equipment):
            db_session.add(GymEquipment(gym_id=gym.id, equipment_type=f"equipment_{i}", quantity=1))
        for _ in range(exercises):
            db_session.add(GymExercise(gym_id=gym.id, exercise_id=uuid4()))
        if plans:
            main = WorkoutPlan(
                owner_id=owner.owner_id,
                name="4-Day Upper/Lower",
                is_main_program=True,
                program_type="ulul",
                created_at=T0,
            )
            db_session.add(main)
            db_session.flush()
            for i in range(plans):
                child = WorkoutPlan(
                    owner_id=owner.owner_id,
                    name=f"Workout {i + 1}",
                    parent_plan_id=main.id,
                    gym_id=gym.id,
                    program_type="ulul",
                    created_at=T0 + timedelta(seconds=i + 1),
                )
                db_session.add(child)
                db_session.flush()
                db_session.add(PlanExercise(plan_id=child.id, exercise_id=uuid4(), order_index=0))

        if active:
            owner.active_gym_id = gym.id
        db_session.flush()
        return gym

    return _make


# ---------------------------------------------------------------------------
# Fakes for external services
# ---------------------------------------------------------------------------

class FakeGenerationClient:
    """
    Writes a plan tree into the store the way the generation service does,
    then answers with its ids. ``error`` is raised instead when set;
    ``on_call`` runs before anything is written.
    """

    def __init__(self, db_session, error=None, child_names=("Upper A", "Lower A"), on_call=None):
        self.db = db_session
        self.error = error
        self.child_names = child_names
        self.on_call = on_call
        self.calls: List[tuple] = []

    def generate(self, owner_id, gym_id, program_type, session_length):
        self.calls.append(("generate", owner_id, gym_id, program_type, session_length))
        return self._respond(owner_id, gym_id, program_type)

    def copy(self, owner_id, source_gym_id, target_gym_id, program_type, session_length):
        self.calls.append(("copy", owner_id, source_gym_id, target_gym_id, program_type, session_length))
        return self._respond(owner_id, target_gym_id, program_type)

    def _respond(self, owner_id, gym_id, program_type):
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error

        store = GymStore(self.db)
        main = store.insert_workout_plan(owner_id, PROGRAM_TEMPLATE_NAMES[program_type], program_type=program_type)
        children = []
        for name in self.child_names:
            child = store.insert_workout_plan(
                owner_id, name, parent_plan_id=main.id, gym_id=gym_id, program_type=program_type
            )
            store.insert_plan_exercises(
                child.id, [{"exercise_id": uuid4(), "order_index": i} for i in range(3)]
            )
            children.append({"id": child.id, "name": name})
        return GenerationResponse(main_plan_id=main.id, child_plans=children, exercise_count=3 * len(children))


class FakeAnalysisClient:
    def __init__(self, equipment=None, exercise_ids=None, error=None):
        self.equipment = equipment if equipment is not None else [("barbell", 1), ("dumbbells", 2)]
        self.exercise_ids = exercise_ids if exercise_ids is not None else [uuid4(), uuid4(), uuid4()]
        self.error = error
        self.calls = []

    def analyze(self, gym_id, images):
        self.calls.append((gym_id, tuple(images)))
        if self.error is not None:
            raise self.error
        return AnalysisResult(equipment=list(self.equipment), exercise_ids=list(self.exercise_ids))


class RecordingDispatcher(BackgroundDispatcher):
    def __init__(self):
        self.reaps = []
        self.resyncs = []

    def reap(self, owner_id):
        self.reaps.append(owner_id)

    def full_resync(self, owner_id):
        self.resyncs.append(owner_id)


@pytest.fixture
def make_generation_client(db_session):
    def _make(**kwargs):
        return FakeGenerationClient(db_session, **kwargs)

    return _make


@pytest.fixture
def generation_client(make_generation_client):
    return make_generation_client()


@pytest.fixture
def make_analysis_client():
    return FakeAnalysisClient


@pytest.fixture
def analysis_client(make_analysis_client):
    return make_analysis_client()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def sessions():
    return SetupSessionStore(redis_client=None, fallback={})


@pytest.fixture
def local_cache(store):
    return LocalPlanCache(engine=build_engine("sqlite://"), snapshot_source=store.load_plan_snapshot)


@pytest.fixture
def make_controller(store, sessions, generation_client, analysis_client, dispatcher, local_cache):
    def _make(owner, **overrides):
        owner_sessions = overrides.pop("sessions", sessions)
        options = dict(
            coordinator=PlanGenerationCoordinator(store, overrides.pop("generation_client", generation_client)),
            sources=GymSetupSources(
                store,
                overrides.pop("analysis_client", analysis_client),
                default_equipment=DEFAULT_EQUIPMENT,
            ),
            synchronizer=LocalMirrorSynchronizer(local_cache, resync=dispatcher.full_resync),
            dispatcher=dispatcher,
        )
        options.update(overrides)
        return FlowController(owner.owner_id, store, owner_sessions, **options)

    return _make
