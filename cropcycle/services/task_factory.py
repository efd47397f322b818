"""Create and cancel time-triggered crop tasks.

Scheduling is idempotent: before a task is created the factory looks for an
active task with the same ``(crop_id, task_name)`` and skips creation when one
exists, so re-running ``schedule_all_stage_tasks`` never duplicates work.
A partial unique index on ``task_schedules`` backs this up against racing
schedulers.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cropcycle.clock import Clock, utc_now
from cropcycle.models.crops import Crop
from cropcycle.models.enums import (
	CropTaskNameEnum,
	StageCodeEnum,
	TaskFrequencyEnum,
	TaskResourceEnum,
)
from cropcycle.models.recipe import Recipe
from cropcycle.models.tasks import TaskSchedule
from cropcycle.services.batch_coordinator import BatchCoordinator
from cropcycle.services.growth_timeline import project_stage_timeline
from cropcycle.services.stage_registry import StageRegistry

logger = structlog.get_logger("cropcycle.tasks")


@dataclass(frozen=True, slots=True)
class PlannedTask:
	task_name: CropTaskNameEnum
	run_at: datetime
	target_stage: StageCodeEnum | None = None


class TaskFactory:
	def __init__(
		self,
		db: AsyncSession,
		registry: StageRegistry | None = None,
		clock: Clock = utc_now,
		batch: BatchCoordinator | None = None,
	):
		self.db = db
		self.registry = registry or StageRegistry.default()
		self.clock = clock
		self.batch = batch or BatchCoordinator(db)

	# ── Planning ────────────────────────────────────────────────────────────

	def plan_stage_events(self, crop: Crop, recipe: Recipe) -> list[PlannedTask]:
		"""Future stage boundaries and the watering-suspension instant, in run order."""
		current = self.registry.by_id(crop.current_stage_id)
		timeline = project_stage_timeline(crop, recipe, self.registry, current)
		now = self.clock()

		planned: list[PlannedTask] = []
		for code, run_at in timeline.items():
			if run_at <= now:
				continue
			if self.registry.is_terminal(code):
				planned.append(PlannedTask(CropTaskNameEnum.harvest_reminder, run_at, code))
			else:
				planned.append(PlannedTask(CropTaskNameEnum.advance_to(code), run_at, code))

		harvest_at = timeline.get(self.registry.terminal.code)
		suspend_hours = float(recipe.suspend_water_hours or 0)
		if harvest_at is not None and suspend_hours > 0 and crop.watering_suspended_at is None:
			suspend_at = harvest_at - timedelta(hours=suspend_hours)
			after_planting = crop.planting_at is None or suspend_at > crop.planting_at
			if after_planting and suspend_at > now:
				planned.append(PlannedTask(CropTaskNameEnum.suspend_watering, suspend_at))
			else:
				logger.warning(
					"watering_suspension_not_scheduled",
					crop_id=str(crop.id),
					suspend_at=suspend_at.isoformat(),
					planting_at=crop.planting_at.isoformat() if crop.planting_at else None,
				)

		return sorted(planned, key=lambda item: item.run_at)

	async def schedule_all_stage_tasks(
		self,
		crop: Crop,
		recipe: Recipe | None = None,
	) -> list[TaskSchedule]:
		if recipe is None:
			recipe = await self.db.get(Recipe, crop.recipe_id)
		if recipe is None:
			logger.warning("task_scheduling_skipped_no_recipe", crop_id=str(crop.id))
			return []

		planned = self.plan_stage_events(crop, recipe)
		if not planned:
			return []

		members = await self.batch.members_of(crop)
		tray_numbers = [member.tray_number for member in members]
		variety = recipe.variety_name

		created: list[TaskSchedule] = []
		skipped = 0
		for item in planned:
			existing = await self._find_active_task(crop.id, item.task_name)
			if existing is not None:
				skipped += 1
				continue
			if item.task_name == CropTaskNameEnum.suspend_watering:
				task = self.create_watering_suspension_task(crop, item.run_at, variety=variety)
			elif item.task_name == CropTaskNameEnum.harvest_reminder:
				task = self.create_harvest_reminder_task(
					crop, item.run_at, variety=variety, tray_numbers=tray_numbers
				)
			elif item.target_stage is not None:
				task = self.create_batch_stage_transition_task(
					crop, item.target_stage, item.run_at, tray_numbers=tray_numbers, variety=variety
				)
			else:
				logger.warning(
					"planned_transition_without_target",
					crop_id=str(crop.id),
					task_name=item.task_name,
				)
				continue
			created.append(task)

		await self.db.flush()
		logger.info(
			"crop_tasks_scheduled",
			crop_id=str(crop.id),
			created=len(created),
			already_scheduled=skipped,
			task_names=[task.task_name for task in created],
		)
		return created

	# ── Named constructors ──────────────────────────────────────────────────

	def create_stage_transition_task(
		self,
		crop: Crop,
		target_stage: StageCodeEnum,
		run_at: datetime,
		*,
		variety: str = "Unknown",
		extra_conditions: dict[str, Any] | None = None,
	) -> TaskSchedule:
		conditions = self._base_conditions(crop, variety)
		conditions["target_stage"] = target_stage.value
		if extra_conditions:
			conditions.update(extra_conditions)
		return self._build_task(
			crop,
			task_name=CropTaskNameEnum.advance_to(target_stage),
			name=f"Advance crop to {target_stage.value} - {variety} (Tray #{crop.tray_number})",
			run_at=run_at,
			target_stage=target_stage,
			conditions=conditions,
		)

	def create_batch_stage_transition_task(
		self,
		crop: Crop,
		target_stage: StageCodeEnum,
		run_at: datetime,
		*,
		tray_numbers: Sequence[str],
		variety: str = "Unknown",
	) -> TaskSchedule:
		trays = list(tray_numbers) or [crop.tray_number]
		task = self.create_stage_transition_task(
			crop,
			target_stage,
			run_at,
			variety=variety,
			extra_conditions={
				"batch_identifier": self.batch.batch_identifier(crop),
				"tray_numbers": trays,
				"tray_count": len(trays),
				"tray_list": ", ".join(trays),
			},
		)
		task.name = f"Advance crop batch to {target_stage.value} - {variety}"
		return task

	def create_watering_suspension_task(
		self,
		crop: Crop,
		run_at: datetime,
		*,
		variety: str = "Unknown",
	) -> TaskSchedule:
		return self._build_task(
			crop,
			task_name=CropTaskNameEnum.suspend_watering,
			name=f"Suspend watering - {variety} (Tray #{crop.tray_number})",
			run_at=run_at,
			target_stage=None,
			conditions=self._base_conditions(crop, variety),
		)

	def create_harvest_reminder_task(
		self,
		crop: Crop,
		run_at: datetime,
		*,
		variety: str = "Unknown",
		tray_numbers: Sequence[str] | None = None,
	) -> TaskSchedule:
		trays = list(tray_numbers) if tray_numbers else [crop.tray_number]
		conditions = self._base_conditions(crop, variety)
		conditions.update(
			{
				"target_stage": self.registry.terminal.code.value,
				"expected_harvest_at": run_at.isoformat(),
				"tray_numbers": trays,
				"tray_count": len(trays),
			}
		)
		return self._build_task(
			crop,
			task_name=CropTaskNameEnum.harvest_reminder,
			name=f"Harvest due - {variety} (Tray #{crop.tray_number})",
			run_at=run_at,
			target_stage=self.registry.terminal.code,
			conditions=conditions,
		)

	# ── Cancellation & reads ────────────────────────────────────────────────

	async def delete_tasks_for_crop(self, crop: Crop) -> int:
		"""Deactivate every active task owned by the crop; return how many."""
		tasks = await self._active_tasks_for_crop(crop.id)
		for task in tasks:
			task.is_active = False
		if tasks:
			await self.db.flush()
		logger.info("crop_tasks_cancelled", crop_id=str(crop.id), cancelled=len(tasks))
		return len(tasks)

	async def list_tasks_for_crop(
		self,
		crop_id: uuid.UUID,
		*,
		include_inactive: bool = False,
	) -> list[TaskSchedule]:
		if not include_inactive:
			return await self._active_tasks_for_crop(crop_id)
		stmt = (
			select(TaskSchedule)
			.where(self._owned_by(crop_id))
			.order_by(TaskSchedule.next_run_at.asc())
		)
		rows = await self.db.execute(stmt)
		return list(rows.scalars().all())

	async def _find_active_task(
		self,
		crop_id: uuid.UUID,
		task_name: CropTaskNameEnum,
	) -> TaskSchedule | None:
		stmt = select(TaskSchedule).where(
			TaskSchedule.resource_type == TaskResourceEnum.crops.value,
			TaskSchedule.crop_id == crop_id,
			TaskSchedule.task_name == task_name.value,
			TaskSchedule.is_active.is_(True),
		)
		row = await self.db.execute(stmt.limit(1))
		return row.scalars().first()

	async def _active_tasks_for_crop(self, crop_id: uuid.UUID) -> list[TaskSchedule]:
		stmt = (
			select(TaskSchedule)
			.where(self._owned_by(crop_id), TaskSchedule.is_active.is_(True))
			.order_by(TaskSchedule.next_run_at.asc())
		)
		rows = await self.db.execute(stmt)
		return list(rows.scalars().all())

	@staticmethod
	def _owned_by(crop_id: uuid.UUID):  # type: ignore[no-untyped-def]
		return (TaskSchedule.resource_type == TaskResourceEnum.crops.value) & or_(
			TaskSchedule.crop_id == crop_id,
			TaskSchedule.conditions["crop_id"].astext == str(crop_id),
		)

	# ── Helpers ─────────────────────────────────────────────────────────────

	@staticmethod
	def _base_conditions(crop: Crop, variety: str) -> dict[str, Any]:
		return {
			"crop_id": str(crop.id),
			"tray_number": crop.tray_number,
			"variety": variety,
		}

	def _build_task(
		self,
		crop: Crop,
		*,
		task_name: CropTaskNameEnum,
		name: str,
		run_at: datetime,
		target_stage: StageCodeEnum | None,
		conditions: dict[str, Any],
	) -> TaskSchedule:
		task = TaskSchedule(
			id=uuid.uuid4(),
			resource_type=TaskResourceEnum.crops.value,
			task_name=task_name.value,
			name=name,
			crop_id=crop.id,
			target_stage=target_stage.value if target_stage is not None else None,
			frequency=TaskFrequencyEnum.once.value,
			conditions=conditions,
			scheduled_at=self.clock(),
			next_run_at=run_at,
			is_active=True,
		)
		self.db.add(task)
		return task
