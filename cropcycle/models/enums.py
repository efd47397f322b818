"""Enum types shared by the ORM models, schemas and services.

These are plain StrEnums: stage codes are stored as ``crop_stages.code``
strings and task names as ``task_schedules.task_name`` strings, so no
PostgreSQL ENUM type is created for them.
"""

from enum import StrEnum

# ── Growth stages ───────────────────────────────────────────────────────────


class StageCodeEnum(StrEnum):
    """Growth stage codes, declared in growth order."""

    soaking = "soaking"
    germination = "germination"
    blackout = "blackout"
    light = "light"
    harvested = "harvested"


# ── Task scheduling ─────────────────────────────────────────────────────────


class TaskResourceEnum(StrEnum):
    """Resource family a scheduled task acts on."""

    crops = "crops"


class TaskFrequencyEnum(StrEnum):
    """How often a scheduled task fires."""

    once = "once"


class CropTaskNameEnum(StrEnum):
    """Task names created by the task factory."""

    advance_to_germination = "advance_to_germination"
    advance_to_blackout = "advance_to_blackout"
    advance_to_light = "advance_to_light"
    advance_to_harvested = "advance_to_harvested"
    suspend_watering = "suspend_watering"
    harvest_reminder = "harvest_reminder"

    @classmethod
    def advance_to(cls, stage: StageCodeEnum) -> "CropTaskNameEnum":
        return cls(f"advance_to_{stage.value}")


# ── Lifecycle events ────────────────────────────────────────────────────────


class CropEventEnum(StrEnum):
    """Event types published on the crop events channel."""

    planted = "planted"
    stage_advanced = "stage_advanced"
    stage_reset = "stage_reset"
    watering_suspended = "watering_suspended"
    watering_resumed = "watering_resumed"
    harvest_recorded = "harvest_recorded"
    harvest_due = "harvest_due"
    rescheduled = "rescheduled"
    deleted = "deleted"
