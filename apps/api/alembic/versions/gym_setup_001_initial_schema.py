"""gym_setup_initial_schema

Revision ID: gym_setup_001
Revises:
Create Date: 2026-10-18

Profiles, gyms (equipment + exercise pool) and the two-level workout plan
tree used by the gym setup wizard.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "gym_setup_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profile",
        sa.Column("owner_id", sa.Uuid(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("active_gym_id", sa.Uuid(), nullable=True),
        sa.Column("active_plan_id", sa.Uuid(), nullable=True),
        sa.Column("program_type", sa.Text(), nullable=True),
        sa.Column("preferred_session_length", sa.Text(), nullable=True),
        sa.Column("plan_generation_status", sa.Text(), server_default="not_started", nullable=False),
        sa.Column("plan_generation_error", sa.Text(), nullable=True),
    )

    op.create_table(
        "gym",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("profile.owner_id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_gym_owner_id", "gym", ["owner_id"])
    op.create_index("ix_gym_owner_created", "gym", ["owner_id", "created_at"])

    op.create_table(
        "gym_equipment",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("gym_id", sa.Uuid(), sa.ForeignKey("gym.id"), nullable=False),
        sa.Column("equipment_type", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Integer(), server_default="1", nullable=False),
    )
    op.create_index("ix_gym_equipment_gym_id", "gym_equipment", ["gym_id"])

    op.create_table(
        "gym_exercise",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("gym_id", sa.Uuid(), sa.ForeignKey("gym.id"), nullable=False),
        sa.Column("exercise_id", sa.Uuid(), nullable=False),
        sa.UniqueConstraint("gym_id", "exercise_id", name="uq_gym_exercise"),
    )
    op.create_index("ix_gym_exercise_gym_id", "gym_exercise", ["gym_id"])

    op.create_table(
        "workout_plan",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("profile.owner_id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("parent_plan_id", sa.Uuid(), sa.ForeignKey("workout_plan.id"), nullable=True),
        sa.Column("gym_id", sa.Uuid(), sa.ForeignKey("gym.id"), nullable=True),
        sa.Column("is_main_program", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("program_type", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_workout_plan_owner_id", "workout_plan", ["owner_id"])
    op.create_index("ix_workout_plan_parent_plan_id", "workout_plan", ["parent_plan_id"])
    op.create_index("ix_workout_plan_gym_id", "workout_plan", ["gym_id"])

    op.create_table(
        "plan_exercise",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("workout_plan.id"), nullable=False),
        sa.Column("exercise_id", sa.Uuid(), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False),
        sa.Column("is_bonus", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.UniqueConstraint("plan_id", "order_index", name="uq_plan_exercise_order"),
    )
    op.create_index("ix_plan_exercise_plan_id", "plan_exercise", ["plan_id"])


def downgrade() -> None:
    op.drop_index("ix_plan_exercise_plan_id", table_name="plan_exercise")
    op.drop_table("plan_exercise")
    op.drop_index("ix_workout_plan_gym_id", table_name="workout_plan")
    op.drop_index("ix_workout_plan_parent_plan_id", table_name="workout_plan")
    op.drop_index("ix_workout_plan_owner_id", table_name="workout_plan")
    op.drop_table("workout_plan")
    op.drop_index("ix_gym_exercise_gym_id", table_name="gym_exercise")
    op.drop_table("gym_exercise")
    op.drop_index("ix_gym_equipment_gym_id", table_name="gym_equipment")
    op.drop_table("gym_equipment")
    op.drop_index("ix_gym_owner_created", table_name="gym")
    op.drop_index("ix_gym_owner_id", table_name="gym")
    op.drop_table("gym")
    op.drop_table("profile")
