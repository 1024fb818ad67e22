from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, Text, Index, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
import uuid


class Profile(Base):
    """
    Per-user aggregate: active gym pointer, programme settings, generation status.

    Exactly one row per user. The gym cap and active-gym pointer are read from
    here by every orchestrator call rather than from ambient state.
    """
    __tablename__ = "profile"

    owner_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # No FK: gym.owner_id already references profile, and the orchestrator keeps
    # this pointer valid (reassigned before any delete).
    active_gym_id = Column(Uuid, nullable=True)
    active_plan_id = Column(Uuid, nullable=True)

    program_type = Column(Text, nullable=True)  # 'ulul' | 'ppl'
    preferred_session_length = Column(Text, nullable=True)  # '15-30' | '30-45' | '45-60' | '60-90'

    # 'not_started' | 'in_progress' | 'completed' | 'failed'
    plan_generation_status = Column(Text, default="not_started", nullable=False)
    plan_generation_error = Column(Text, nullable=True)

    gyms = relationship("Gym", back_populates="owner", lazy="dynamic")


class Gym(Base):
    __tablename__ = "gym"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, ForeignKey("profile.owner_id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    owner = relationship("Profile", back_populates="gyms")
    # Children are deleted explicitly by GymStore.delete_gym in FK order.
    equipment = relationship("GymEquipment", back_populates="gym", lazy="dynamic")
    exercises = relationship("GymExercise", back_populates="gym", lazy="dynamic")

    __table_args__ = (
        Index("ix_gym_owner_created", "owner_id", "created_at"),
    )


class GymEquipment(Base):
    __tablename__ = "gym_equipment"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    gym_id = Column(Uuid, ForeignKey("gym.id"), nullable=False, index=True)
    equipment_type = Column(Text, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    gym = relationship("Gym", back_populates="equipment")


class GymExercise(Base):
    """Exercise-pool link between a gym and the exercise catalog."""
    __tablename__ = "gym_exercise"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    gym_id = Column(Uuid, ForeignKey("gym.id"), nullable=False, index=True)
    exercise_id = Column(Uuid, nullable=False)  # catalog lives outside this service

    gym = relationship("Gym", back_populates="exercises")

    __table_args__ = (
        UniqueConstraint("gym_id", "exercise_id", name="uq_gym_exercise"),
    )


class WorkoutPlan(Base):
    """
    Two-level plan tree ("T-Path").

    Root: is_main_program=True, parent_plan_id NULL, gym_id NULL.
    Child: parent_plan_id = root.id, gym_id = the gym the workout belongs to.
    """
    __tablename__ = "workout_plan"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, ForeignKey("profile.owner_id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    parent_plan_id = Column(Uuid, ForeignKey("workout_plan.id"), nullable=True, index=True)
    gym_id = Column(Uuid, ForeignKey("gym.id"), nullable=True, index=True)
    is_main_program = Column(Boolean, default=False, nullable=False)
    program_type = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    exercises = relationship("PlanExercise", back_populates="plan", lazy="dynamic")


class PlanExercise(Base):
    __tablename__ = "plan_exercise"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid, ForeignKey("workout_plan.id"), nullable=False, index=True)
    exercise_id = Column(Uuid, nullable=False)
    order_index = Column(Integer, nullable=False)
    is_bonus = Column(Boolean, default=False, nullable=False)

    plan = relationship("WorkoutPlan", back_populates="exercises")

    __table_args__ = (
        UniqueConstraint("plan_id", "order_index", name="uq_plan_exercise_order"),
    )
