"""
Local plan cache.

On-device replica of the owner's workout plan trees, stored in SQLite.
Writes are upserts so replaying the same data is harmless; full_resync
replaces the owner's rows with a fresh snapshot from the remote store.
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import Boolean, Column, DateTime, Integer, Text, UniqueConstraint, Uuid, delete, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base

from core.config import settings
from core.database import build_engine
from services.gym_setup.errors import SyncFailure
from services.gym_setup.store import PlanExerciseRecord, PlanRecord, PlanSnapshot

logger = logging.getLogger(__name__)

LocalBase = declarative_base()


class LocalWorkoutPlan(LocalBase):
    __tablename__ = "local_workout_plan"

    id = Column(Uuid, primary_key=True)
    owner_id = Column(Uuid, nullable=False, index=True)
    name = Column(Text, nullable=False)
    parent_plan_id = Column(Uuid, nullable=True)
    gym_id = Column(Uuid, nullable=True)
    is_main_program = Column(Boolean, default=False, nullable=False)
    program_type = Column(Text, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False)


class LocalPlanExercise(LocalBase):
    __tablename__ = "local_plan_exercise"

    id = Column(Uuid, primary_key=True)
    plan_id = Column(Uuid, nullable=False, index=True)
    exercise_id = Column(Uuid, nullable=False)
    order_index = Column(Integer, nullable=False)
    is_bonus = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("plan_id", "exercise_id", "order_index", name="uq_local_plan_exercise_key"),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache(maxsize=1)
def get_local_cache_engine():
    """Process-wide engine for LOCAL_CACHE_URL."""
    return build_engine(settings.LOCAL_CACHE_URL)


class LocalPlanCache:
    def __init__(self, engine=None, snapshot_source: Optional[Callable[[UUID], PlanSnapshot]] = None):
        self.engine = engine or get_local_cache_engine()
        LocalBase.metadata.create_all(self.engine)
        self.snapshot_source = snapshot_source

    def _execute(self, operation: str, *statements) -> None:
        try:
            with self.engine.begin() as conn:
                for statement in statements:
                    conn.execute(statement)
        except SQLAlchemyError as e:
            raise SyncFailure(f"{operation} failed: {e}") from e

    def upsert_plan(self, plan: PlanRecord) -> None:
        values = dict(
            id=plan.id,
            owner_id=plan.owner_id,
            name=plan.name,
            parent_plan_id=plan.parent_plan_id,
            gym_id=plan.gym_id,
            is_main_program=plan.is_main_program,
            program_type=plan.program_type,
            synced_at=_utcnow(),
        )
        stmt = sqlite_insert(LocalWorkoutPlan).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[LocalWorkoutPlan.id],
            set_={k: v for k, v in values.items() if k != "id"},
        )
        self._execute(f"upsert_plan {plan.id}", stmt)

    def upsert_plan_exercise(self, entry: PlanExerciseRecord) -> None:
        stmt = sqlite_insert(LocalPlanExercise).values(
            id=entry.id,
            plan_id=entry.plan_id,
            exercise_id=entry.exercise_id,
            order_index=entry.order_index,
            is_bonus=entry.is_bonus,
        )
        # Same (plan, exercise, position) already mirrored: nothing to do.
        stmt = stmt.on_conflict_do_nothing(
            index_elements=[LocalPlanExercise.plan_id, LocalPlanExercise.exercise_id, LocalPlanExercise.order_index],
        )
        # The row moved (same id, new key): drop the old copy first.
        moved = delete(LocalPlanExercise).where(
            LocalPlanExercise.id == entry.id,
            or_(
                LocalPlanExercise.plan_id != entry.plan_id,
                LocalPlanExercise.exercise_id != entry.exercise_id,
                LocalPlanExercise.order_index != entry.order_index,
            ),
        )
        self._execute(f"upsert_plan_exercise {entry.plan_id}/{entry.order_index}", moved, stmt)

    def full_resync(self, owner_id: UUID) -> int:
        """Replace every cached plan of ``owner_id`` with the remote snapshot."""
        if self.snapshot_source is None:
            raise SyncFailure("No snapshot source configured for full resync")
        snapshot = self.snapshot_source(owner_id)
        synced_at = _utcnow()

        try:
            with self.engine.begin() as conn:
                plan_ids = list(
                    conn.execute(select(LocalWorkoutPlan.id).where(LocalWorkoutPlan.owner_id == owner_id)).scalars()
                )
                if plan_ids:
                    conn.execute(delete(LocalPlanExercise).where(LocalPlanExercise.plan_id.in_(plan_ids)))
                    conn.execute(delete(LocalWorkoutPlan).where(LocalWorkoutPlan.id.in_(plan_ids)))
                if snapshot.plans:
                    conn.execute(
                        LocalWorkoutPlan.__table__.insert(),
                        [
                            dict(
                                id=p.id,
                                owner_id=p.owner_id,
                                name=p.name,
                                parent_plan_id=p.parent_plan_id,
                                gym_id=p.gym_id,
                                is_main_program=p.is_main_program,
                                program_type=p.program_type,
                                synced_at=synced_at,
                            )
                            for p in snapshot.plans
                        ],
                    )
                if snapshot.exercises:
                    conn.execute(
                        LocalPlanExercise.__table__.insert(),
                        [
                            dict(
                                id=e.id,
                                plan_id=e.plan_id,
                                exercise_id=e.exercise_id,
                                order_index=e.order_index,
                                is_bonus=e.is_bonus,
                            )
                            for e in snapshot.exercises
                        ],
                    )
        except SQLAlchemyError as e:
            raise SyncFailure(f"full_resync for owner {owner_id} failed: {e}") from e

        logger.info(f"Local plan cache resynced for owner {owner_id}: {len(snapshot.plans)} plans")
        return len(snapshot.plans)

    # ---- Reads ----

    def list_plans(self, owner_id: UUID) -> List[PlanRecord]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(LocalWorkoutPlan)
                .where(LocalWorkoutPlan.owner_id == owner_id)
                .order_by(LocalWorkoutPlan.is_main_program.desc(), LocalWorkoutPlan.name, LocalWorkoutPlan.id)
            ).all()
        return [
            PlanRecord(
                id=r.id,
                owner_id=r.owner_id,
                name=r.name,
                parent_plan_id=r.parent_plan_id,
                gym_id=r.gym_id,
                is_main_program=r.is_main_program,
                program_type=r.program_type,
            )
            for r in rows
        ]

    def list_plan_exercises(self, plan_id: UUID) -> List[PlanExerciseRecord]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(LocalPlanExercise)
                .where(LocalPlanExercise.plan_id == plan_id)
                .order_by(LocalPlanExercise.order_index)
            ).all()
        return [
            PlanExerciseRecord(
                id=r.id,
                plan_id=r.plan_id,
                exercise_id=r.exercise_id,
                order_index=r.order_index,
                is_bonus=r.is_bonus,
            )
            for r in rows
        ]
