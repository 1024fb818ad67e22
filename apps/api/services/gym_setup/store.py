"""
Remote store access for gym setup.

The authoritative store is the SQLAlchemy session handed in by the caller.
GymStore methods flush but never commit on their own: the owner of the
session (the wizard controller at each checkpoint, a Celery task, or get_db
at the end of a request) calls commit()/rollback().

Every database error is re-raised as TransientRemoteError so the reaper and
completeness checker can fail open without knowing about SQLAlchemy.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Gym, GymEquipment, GymExercise, PlanExercise, Profile, WorkoutPlan
from services.gym_setup.constants import MAX_GYMS_PER_USER
from services.gym_setup.errors import GymNotFound, TransientRemoteError, ValidationError

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {
    "active_gym_id",
    "active_plan_id",
    "program_type",
    "preferred_session_length",
    "plan_generation_status",
    "plan_generation_error",
}


@dataclass(frozen=True)
class PlanRecord:
    id: UUID
    owner_id: UUID
    name: str
    parent_plan_id: Optional[UUID]
    gym_id: Optional[UUID]
    is_main_program: bool
    program_type: Optional[str] = None

    @classmethod
    def from_model(cls, plan: WorkoutPlan) -> "PlanRecord":
        return cls(
            id=plan.id,
            owner_id=plan.owner_id,
            name=plan.name,
            parent_plan_id=plan.parent_plan_id,
            gym_id=plan.gym_id,
            is_main_program=bool(plan.is_main_program),
            program_type=plan.program_type,
        )


@dataclass(frozen=True)
class PlanExerciseRecord:
    id: UUID
    plan_id: UUID
    exercise_id: UUID
    order_index: int
    is_bonus: bool = False

    @classmethod
    def from_model(cls, entry: PlanExercise) -> "PlanExerciseRecord":
        return cls(
            id=entry.id,
            plan_id=entry.plan_id,
            exercise_id=entry.exercise_id,
            order_index=entry.order_index,
            is_bonus=bool(entry.is_bonus),
        )


@dataclass
class PlanTree:
    """Main program, the gym's child workouts, and their plan exercises."""
    main_plan: PlanRecord
    child_plans: List[PlanRecord] = field(default_factory=list)
    exercises: List[PlanExerciseRecord] = field(default_factory=list)

    @property
    def owner_id(self) -> UUID:
        return self.main_plan.owner_id


@dataclass
class PlanSnapshot:
    """Every plan and plan exercise an owner has (used for full resync)."""
    owner_id: UUID
    plans: List[PlanRecord] = field(default_factory=list)
    exercises: List[PlanExerciseRecord] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _remote(operation: str):
    try:
        yield
    except SQLAlchemyError as e:
        logger.warning(f"Remote store operation '{operation}' failed: {e}")
        raise TransientRemoteError(f"{operation} failed: {e}") from e


class GymStore:
    """CRUD contract the orchestrator needs from the authoritative store."""

    def __init__(self, db: Session):
        self.db = db

    def commit(self) -> None:
        with _remote("commit"):
            self.db.commit()

    def rollback(self) -> None:
        with _remote("rollback"):
            self.db.rollback()

    # ---- Profile ----

    def get_profile(self, owner_id: UUID) -> Optional[Profile]:
        with _remote("get_profile"):
            return self.db.query(Profile).filter(Profile.owner_id == owner_id).first()

    def update_profile(self, owner_id: UUID, **fields: Any) -> Profile:
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")
        with _remote("update_profile"):
            profile = self.db.query(Profile).filter(Profile.owner_id == owner_id).first()
            if profile is None:
                profile = Profile(owner_id=owner_id)
                self.db.add(profile)
            for name, value in fields.items():
                setattr(profile, name, value)
            self.db.flush()
            return profile

    # ---- Gyms ----

    def list_gyms(self, owner_id: UUID) -> List[Gym]:
        """All gyms of an owner, oldest first."""
        with _remote("list_gyms"):
            return (
                self.db.query(Gym)
                .filter(Gym.owner_id == owner_id)
                .order_by(Gym.created_at.asc(), Gym.id.asc())
                .all()
            )

    def count_gyms(self, owner_id: UUID) -> int:
        with _remote("count_gyms"):
            return self.db.query(Gym).filter(Gym.owner_id == owner_id).count()

    def get_gym(self, owner_id: UUID, gym_id: UUID) -> Gym:
        with _remote("get_gym"):
            gym = self.db.query(Gym).filter(Gym.id == gym_id, Gym.owner_id == owner_id).first()
        if gym is None:
            raise GymNotFound(gym_id)
        return gym

    def create_gym(self, owner_id: UUID, name: str) -> Gym:
        # Re-checked here so two concurrent wizards cannot both pass the cap.
        if self.count_gyms(owner_id) >= MAX_GYMS_PER_USER:
            raise ValidationError(
                f"You can have at most {MAX_GYMS_PER_USER} gyms", field="name"
            )
        with _remote("create_gym"):
            gym = Gym(owner_id=owner_id, name=name, created_at=_utcnow())
            self.db.add(gym)
            self.db.flush()
            return gym

    def rename_gym(self, owner_id: UUID, gym_id: UUID, name: str) -> Gym:
        gym = self.get_gym(owner_id, gym_id)
        with _remote("rename_gym"):
            gym.name = name
            self.db.flush()
        return gym

    def delete_gym(self, gym_id: UUID) -> None:
        """Delete a gym and everything hanging off it, children first."""
        with _remote("delete_gym"), self.db.begin_nested():
            self.db.query(GymEquipment).filter(GymEquipment.gym_id == gym_id).delete(synchronize_session=False)
            self.db.query(GymExercise).filter(GymExercise.gym_id == gym_id).delete(synchronize_session=False)
            plan_ids = [
                row.id for row in self.db.query(WorkoutPlan.id).filter(WorkoutPlan.gym_id == gym_id).all()
            ]
            if plan_ids:
                self.db.query(PlanExercise).filter(PlanExercise.plan_id.in_(plan_ids)).delete(synchronize_session=False)
                self.db.query(WorkoutPlan).filter(WorkoutPlan.id.in_(plan_ids)).delete(synchronize_session=False)
            self.db.query(Gym).filter(Gym.id == gym_id).delete(synchronize_session=False)
        self.db.expire_all()

    # ---- Completeness signals ----

    def has_equipment(self, gym_id: UUID) -> bool:
        with _remote("has_equipment"):
            return self.db.query(GymEquipment.id).filter(GymEquipment.gym_id == gym_id).first() is not None

    def has_exercise_pool(self, gym_id: UUID) -> bool:
        with _remote("has_exercise_pool"):
            return self.db.query(GymExercise.id).filter(GymExercise.gym_id == gym_id).first() is not None

    def has_workout_plans(self, gym_id: UUID) -> bool:
        with _remote("has_workout_plans"):
            return self.db.query(WorkoutPlan.id).filter(WorkoutPlan.gym_id == gym_id).first() is not None

    # ---- Equipment / exercise pool ----

    def insert_equipment(self, gym_id: UUID, items: Iterable[Tuple[str, int]]) -> int:
        count = 0
        with _remote("insert_equipment"):
            for equipment_type, quantity in items:
                self.db.add(GymEquipment(gym_id=gym_id, equipment_type=equipment_type, quantity=max(1, int(quantity))))
                count += 1
            self.db.flush()
        return count

    def list_equipment(self, gym_id: UUID) -> List[GymEquipment]:
        with _remote("list_equipment"):
            return self.db.query(GymEquipment).filter(GymEquipment.gym_id == gym_id).all()

    def insert_exercise_pool_entries(self, gym_id: UUID, exercise_ids: Iterable[UUID]) -> int:
        """Link exercises to a gym; already-linked exercises are skipped."""
        with _remote("insert_exercise_pool_entries"):
            existing = {
                row.exercise_id
                for row in self.db.query(GymExercise.exercise_id).filter(GymExercise.gym_id == gym_id).all()
            }
            added = 0
            for exercise_id in exercise_ids:
                if exercise_id in existing:
                    continue
                self.db.add(GymExercise(gym_id=gym_id, exercise_id=exercise_id))
                existing.add(exercise_id)
                added += 1
            self.db.flush()
        return added

    def list_exercise_pool(self, gym_id: UUID) -> List[UUID]:
        with _remote("list_exercise_pool"):
            return [
                row.exercise_id
                for row in self.db.query(GymExercise.exercise_id).filter(GymExercise.gym_id == gym_id).all()
            ]

    def copy_gym_configuration(self, owner_id: UUID, source_gym_id: UUID, target_gym_id: UUID) -> Tuple[int, int]:
        """Copy equipment and exercise pool between two gyms of the same owner."""
        self.get_gym(owner_id, source_gym_id)
        self.get_gym(owner_id, target_gym_id)
        equipment = [(e.equipment_type, e.quantity) for e in self.list_equipment(source_gym_id)]
        equipment_count = self.insert_equipment(target_gym_id, equipment)
        exercise_count = self.insert_exercise_pool_entries(target_gym_id, self.list_exercise_pool(source_gym_id))
        return equipment_count, exercise_count

    # ---- Workout plans ----

    def list_workout_plans(
        self,
        owner_id: UUID,
        *,
        gym_id: Optional[UUID] = None,
        parent_plan_id: Optional[UUID] = None,
        main_program: Optional[bool] = None,
        program_type: Optional[str] = None,
    ) -> List[WorkoutPlan]:
        with _remote("list_workout_plans"):
            query = self.db.query(WorkoutPlan).filter(WorkoutPlan.owner_id == owner_id)
            if gym_id is not None:
                query = query.filter(WorkoutPlan.gym_id == gym_id)
            if parent_plan_id is not None:
                query = query.filter(WorkoutPlan.parent_plan_id == parent_plan_id)
            if main_program is True:
                query = query.filter(WorkoutPlan.parent_plan_id.is_(None), WorkoutPlan.gym_id.is_(None))
            elif main_program is False:
                query = query.filter(WorkoutPlan.parent_plan_id.isnot(None))
            if program_type is not None:
                query = query.filter(WorkoutPlan.program_type == program_type)
            return query.order_by(WorkoutPlan.created_at.asc(), WorkoutPlan.id.asc()).all()

    def get_workout_plan(self, owner_id: UUID, plan_id: UUID) -> Optional[WorkoutPlan]:
        with _remote("get_workout_plan"):
            return (
                self.db.query(WorkoutPlan)
                .filter(WorkoutPlan.id == plan_id, WorkoutPlan.owner_id == owner_id)
                .first()
            )

    def insert_workout_plan(
        self,
        owner_id: UUID,
        name: str,
        *,
        parent_plan_id: Optional[UUID] = None,
        gym_id: Optional[UUID] = None,
        program_type: Optional[str] = None,
    ) -> WorkoutPlan:
        is_main = parent_plan_id is None
        if is_main and gym_id is not None:
            raise ValueError("A main program cannot be attached to a gym")
        with _remote("insert_workout_plan"):
            plan = WorkoutPlan(
                owner_id=owner_id,
                name=name,
                parent_plan_id=parent_plan_id,
                gym_id=gym_id,
                is_main_program=is_main,
                program_type=program_type,
                created_at=_utcnow(),
            )
            self.db.add(plan)
            self.db.flush()
            return plan

    def insert_plan_exercises(self, plan_id: UUID, entries: Sequence[Dict[str, Any]]) -> int:
        with _remote("insert_plan_exercises"):
            for entry in entries:
                self.db.add(
                    PlanExercise(
                        plan_id=plan_id,
                        exercise_id=entry["exercise_id"],
                        order_index=int(entry["order_index"]),
                        is_bonus=bool(entry.get("is_bonus", False)),
                    )
                )
            self.db.flush()
        return len(entries)

    def list_plan_exercises(self, plan_ids: Sequence[UUID]) -> List[PlanExercise]:
        if not plan_ids:
            return []
        with _remote("list_plan_exercises"):
            return (
                self.db.query(PlanExercise)
                .filter(PlanExercise.plan_id.in_(list(plan_ids)))
                .order_by(PlanExercise.plan_id.asc(), PlanExercise.order_index.asc())
                .all()
            )

    def load_plan_tree(self, owner_id: UUID, main_plan_id: UUID, gym_id: UUID) -> Optional[PlanTree]:
        """Main plan plus the children that belong to ``gym_id``, with their exercises."""
        main = self.get_workout_plan(owner_id, main_plan_id)
        if main is None:
            return None
        children = self.list_workout_plans(owner_id, parent_plan_id=main.id, gym_id=gym_id)
        plan_ids = [main.id] + [c.id for c in children]
        return PlanTree(
            main_plan=PlanRecord.from_model(main),
            child_plans=[PlanRecord.from_model(c) for c in children],
            exercises=[PlanExerciseRecord.from_model(e) for e in self.list_plan_exercises(plan_ids)],
        )

    def load_plan_snapshot(self, owner_id: UUID) -> PlanSnapshot:
        plans = self.list_workout_plans(owner_id)
        exercises = self.list_plan_exercises([p.id for p in plans])
        return PlanSnapshot(
            owner_id=owner_id,
            plans=[PlanRecord.from_model(p) for p in plans],
            exercises=[PlanExerciseRecord.from_model(e) for e in exercises],
        )
