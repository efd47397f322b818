"""initial_crop_lifecycle_schema

Revision ID: 3c9e1f7a2b10
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates crop_stages (seeded), recipes, crops and task_schedules.  Requires
the uuid-ossp extension, which this revision enables if missing.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3c9e1f7a2b10"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

SEED_STAGES = [
    {"id": 1, "code": "soaking", "name": "Soaking", "sort_order": 1},
    {"id": 2, "code": "germination", "name": "Germination", "sort_order": 2},
    {"id": 3, "code": "blackout", "name": "Blackout", "sort_order": 3},
    {"id": 4, "code": "light", "name": "Light", "sort_order": 4},
    {"id": 5, "code": "harvested", "name": "Harvested", "sort_order": 5},
]


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("uuid_generate_v4()"),
        nullable=False,
    )


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _tz(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True)


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── 1. Stage lookup ─────────────────────────────────────────────────
    stages = op.create_table(
        "crop_stages",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.bulk_insert(stages, SEED_STAGES)

    # ── 2. Recipes ──────────────────────────────────────────────────────
    op.create_table(
        "recipes",
        _uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("common_name", sa.String(255), nullable=True),
        sa.Column("cultivar_name", sa.String(255), nullable=True),
        sa.Column("germination_days", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("blackout_days", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("light_days", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("seed_soak_hours", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("suspend_water_hours", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("days_to_maturity", sa.Float(), nullable=True),
        sa.Column("lot_number", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_audit_columns(),
        sa.CheckConstraint("germination_days >= 0", name="ck_recipes_germination_days"),
        sa.CheckConstraint("blackout_days >= 0", name="ck_recipes_blackout_days"),
        sa.CheckConstraint("light_days >= 0", name="ck_recipes_light_days"),
        sa.CheckConstraint("seed_soak_hours >= 0", name="ck_recipes_seed_soak_hours"),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── 3. Crops ────────────────────────────────────────────────────────
    op.create_table(
        "crops",
        _uuid_pk(),
        sa.Column("recipe_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("batch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("tray_number", sa.String(50), nullable=False),
        sa.Column("tray_count", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("requires_soaking", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _tz("planting_at"),
        _tz("soaking_at"),
        _tz("germination_at"),
        _tz("blackout_at"),
        _tz("light_at"),
        _tz("harvested_at"),
        sa.Column("current_stage_id", sa.Integer(), nullable=False),
        _tz("watering_suspended_at"),
        sa.Column("harvest_weight_grams", sa.Float(), nullable=True),
        sa.Column("stage_age_minutes", sa.Integer(), nullable=True),
        sa.Column("stage_age_display", sa.String(32), nullable=True),
        sa.Column("time_to_next_stage_minutes", sa.Integer(), nullable=True),
        sa.Column("time_to_next_stage_display", sa.String(32), nullable=True),
        sa.Column("total_age_minutes", sa.Integer(), nullable=True),
        sa.Column("total_age_display", sa.String(32), nullable=True),
        _tz("expected_harvest_at"),
        *_audit_columns(),
        sa.CheckConstraint("tray_count > 0", name="ck_crops_tray_count"),
        sa.CheckConstraint(
            "harvest_weight_grams IS NULL OR harvest_weight_grams >= 0",
            name="ck_crops_harvest_weight",
        ),
        sa.ForeignKeyConstraint(["recipe_id"], ["recipes.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["current_stage_id"], ["crop_stages.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crops_recipe_planting", "crops", ["recipe_id", "planting_at"])
    op.create_index("ix_crops_batch_id", "crops", ["batch_id"])
    op.create_index("ix_crops_current_stage", "crops", ["current_stage_id"])

    # ── 4. Scheduled tasks ──────────────────────────────────────────────
    op.create_table(
        "task_schedules",
        _uuid_pk(),
        sa.Column("resource_type", sa.String(50), server_default="crops", nullable=False),
        sa.Column("task_name", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("crop_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("target_stage", sa.String(32), nullable=True),
        sa.Column("frequency", sa.String(20), server_default="once", nullable=False),
        sa.Column("conditions", postgresql.JSONB(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        _tz("last_run_at"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["crop_id"], ["crops.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_task_schedules_active_crop_task",
        "task_schedules",
        ["crop_id", "task_name", "resource_type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index("ix_task_schedules_due", "task_schedules", ["is_active", "next_run_at"])


def downgrade() -> None:
    # ── Drop tables in reverse dependency order ─────────────────────────
    op.drop_index("ix_task_schedules_due", table_name="task_schedules")
    op.drop_index("uq_task_schedules_active_crop_task", table_name="task_schedules")
    op.drop_table("task_schedules")
    op.drop_index("ix_crops_current_stage", table_name="crops")
    op.drop_index("ix_crops_batch_id", table_name="crops")
    op.drop_index("ix_crops_recipe_planting", table_name="crops")
    op.drop_table("crops")
    op.drop_table("recipes")
    op.drop_table("crop_stages")
