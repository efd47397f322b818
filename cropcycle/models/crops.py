"""CropStage and Crop ORM models.

A crop's stage is derived from which per-stage timestamp is populated
(``soaking_at`` … ``harvested_at``); ``current_stage_id`` caches that
derivation and is kept in sync by the stage calculator.

Trays planted together form a batch.  Membership is either the explicit
``batch_id`` or, when that is NULL, the pair ``(recipe_id, planting_at)``;
the composite index below serves the latter lookup.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from cropcycle.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# ═══════════════════════════════════════════════════════════════════════════
# CropStage
# ═══════════════════════════════════════════════════════════════════════════


class CropStage(Base, TimestampMixin):
    """Lookup row for one growth stage; ``sort_order`` defines the total order."""

    __tablename__ = "crop_stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        default=True,
        server_default=text("true"),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<CropStage id={self.id} code={self.code!r} order={self.sort_order}>"


# ═══════════════════════════════════════════════════════════════════════════
# Crop
# ═══════════════════════════════════════════════════════════════════════════


class Crop(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One tray (or group of ``tray_count`` trays) growing from a recipe."""

    __tablename__ = "crops"
    __table_args__ = (
        Index("ix_crops_recipe_planting", "recipe_id", "planting_at"),
        Index("ix_crops_batch_id", "batch_id"),
        Index("ix_crops_current_stage", "current_stage_id"),
        CheckConstraint("tray_count > 0", name="ck_crops_tray_count"),
        CheckConstraint(
            "harvest_weight_grams IS NULL OR harvest_weight_grams >= 0",
            name="ck_crops_harvest_weight",
        ),
    )

    recipe_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("recipes.id", ondelete="RESTRICT"),
        nullable=False,
    )
    batch_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    tray_number: Mapped[str] = mapped_column(String(50), nullable=False)
    tray_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default=text("1")
    )
    requires_soaking: Mapped[bool] = mapped_column(
        default=False,
        server_default=text("false"),
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ── Stage timestamps ─────────────────────────────────────────────────
    planting_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    soaking_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    germination_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    blackout_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    light_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    harvested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    current_stage_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("crop_stages.id", ondelete="RESTRICT"),
        nullable=False,
    )
    watering_suspended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    harvest_weight_grams: Mapped[float | None] = mapped_column(Float, nullable=True)

    # ── Derived display fields (recomputed on read/write) ────────────────
    stage_age_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stage_age_display: Mapped[str | None] = mapped_column(String(32), nullable=True)
    time_to_next_stage_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_to_next_stage_display: Mapped[str | None] = mapped_column(String(32), nullable=True)
    total_age_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_age_display: Mapped[str | None] = mapped_column(String(32), nullable=True)
    expected_harvest_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Crop id={self.id} tray={self.tray_number!r} "
            f"stage_id={self.current_stage_id} recipe={self.recipe_id}>"
        )
