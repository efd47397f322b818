"""ORM model registry: importing this module registers every table on Base.metadata.

Alembic ``env.py`` imports ``Base`` from here (not from ``base.py``) so that
autogenerate sees all tables.  Application code can also do::

    from cropcycle.models import Crop, CropStage, Recipe, TaskSchedule
"""

# ── Base & Mixins ───────────────────────────────────────────────────────────
from cropcycle.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# ── Crops ───────────────────────────────────────────────────────────────────
from cropcycle.models.crops import Crop, CropStage

# ── Enums ───────────────────────────────────────────────────────────────────
from cropcycle.models.enums import (
    CropEventEnum,
    CropTaskNameEnum,
    StageCodeEnum,
    TaskFrequencyEnum,
    TaskResourceEnum,
)

# ── Recipes ─────────────────────────────────────────────────────────────────
from cropcycle.models.recipe import Recipe

# ── Scheduled tasks ─────────────────────────────────────────────────────────
from cropcycle.models.tasks import TaskSchedule

__all__ = [
    # Base & mixins
    "Base",
    # Crops
    "Crop",
    # Enums
    "CropEventEnum",
    "CropStage",
    "CropTaskNameEnum",
    # Recipes
    "Recipe",
    "StageCodeEnum",
    "TaskFrequencyEnum",
    "TaskResourceEnum",
    # Scheduled tasks
    "TaskSchedule",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
]
