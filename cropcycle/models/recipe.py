"""Recipe ORM model: the growing protocol a crop is planted against.

Stage durations are stored in (possibly fractional) days, the seed soak in
hours.  ``suspend_water_hours`` is the offset before the expected harvest at
which watering stops.  ``days_to_maturity`` optionally overrides the sum of
the stage durations when projecting the harvest date.

Recipes are maintained elsewhere; the lifecycle engine only reads them.
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Float, String, text
from sqlalchemy.orm import Mapped, mapped_column

from cropcycle.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Recipe(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Growth parameters shared by every crop planted from this recipe."""

    __tablename__ = "recipes"
    __table_args__ = (
        CheckConstraint("germination_days >= 0", name="ck_recipes_germination_days"),
        CheckConstraint("blackout_days >= 0", name="ck_recipes_blackout_days"),
        CheckConstraint("light_days >= 0", name="ck_recipes_light_days"),
        CheckConstraint("seed_soak_hours >= 0", name="ck_recipes_seed_soak_hours"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    common_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cultivar_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    germination_days: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=text("0")
    )
    blackout_days: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=text("0")
    )
    light_days: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=text("0")
    )
    seed_soak_hours: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=text("0")
    )
    suspend_water_hours: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=text("0")
    )
    days_to_maturity: Mapped[float | None] = mapped_column(Float, nullable=True)

    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        default=True,
        server_default=text("true"),
        nullable=False,
    )

    @property
    def variety_name(self) -> str:
        if self.common_name and self.cultivar_name:
            return f"{self.common_name} - {self.cultivar_name}"
        return self.name or "Unknown"

    @property
    def requires_soaking(self) -> bool:
        return (self.seed_soak_hours or 0) > 0

    @property
    def total_days(self) -> float:
        """Days from germination start to harvest."""
        if self.days_to_maturity is not None and self.days_to_maturity > 0:
            return float(self.days_to_maturity)
        return float(
            max(self.germination_days or 0, 0)
            + max(self.blackout_days or 0, 0)
            + max(self.light_days or 0, 0)
        )

    def __repr__(self) -> str:
        return f"<Recipe id={self.id} name={self.name!r} lot={self.lot_number!r}>"
