"""Execute due crop tasks.

The runner is the worker side of ``task_schedules``: it picks up active
tasks whose ``next_run_at`` has passed and performs the matching lifecycle
operation.  Each task runs in its own savepoint so one failure does not undo
the others; every processed task, failed or not, is deactivated.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select

from cropcycle.exceptions import UnknownReferenceError
from cropcycle.models.crops import Crop
from cropcycle.models.enums import CropEventEnum, CropTaskNameEnum, TaskResourceEnum
from cropcycle.models.tasks import TaskSchedule
from cropcycle.services.batch_coordinator import BatchCoordinator
from cropcycle.services.crop_service import CropService

logger = structlog.get_logger("cropcycle.task_runner")


@dataclass(slots=True)
class TaskOutcome:
	task_id: uuid.UUID
	task_name: str
	crop_id: uuid.UUID | None
	success: bool
	message: str
	affected_crop_ids: list[uuid.UUID] = field(default_factory=list)


class TaskRunner:
	def __init__(self, crops: CropService):
		self.crops = crops
		self.db = crops.db
		self.clock = crops.clock
		self.registry = crops.registry

	async def due_tasks(self, limit: int = 100) -> list[TaskSchedule]:
		stmt = (
			select(TaskSchedule)
			.where(
				TaskSchedule.resource_type == TaskResourceEnum.crops.value,
				TaskSchedule.is_active.is_(True),
				TaskSchedule.next_run_at <= self.clock(),
			)
			.order_by(TaskSchedule.next_run_at.asc())
			.limit(limit)
		)
		rows = await self.db.execute(stmt)
		return list(rows.scalars().all())

	async def process_due_tasks(self, limit: int = 100) -> list[TaskOutcome]:
		"""Run every due task in order, then rebuild tasks once per touched batch.

		Tasks fetched for this run stay active until they are processed, so a
		worker that falls behind still executes every missed boundary.
		"""
		tasks = await self.due_tasks(limit)
		if not tasks:
			logger.info("no_due_tasks")
			return []

		outcomes: list[TaskOutcome] = []
		changed: list[Crop] = []
		for task in tasks:
			if not task.is_active:
				continue
			outcome, crop = await self._execute(task)
			outcomes.append(outcome)
			if crop is not None:
				changed.append(crop)
		await self._resync_batches(changed)

		logger.info(
			"due_tasks_processed",
			processed=len(outcomes),
			failed=sum(1 for outcome in outcomes if not outcome.success),
			batches_resynced=len({BatchCoordinator.batch_key(crop) for crop in changed}),
		)
		return outcomes

	async def process_task(self, task: TaskSchedule) -> TaskOutcome:
		outcome, crop = await self._execute(task)
		if crop is not None:
			await self._resync_batches([crop])
		return outcome

	async def _execute(self, task: TaskSchedule) -> tuple[TaskOutcome, Crop | None]:
		crop_id = self._crop_id(task)
		changed: Crop | None = None
		try:
			async with self.db.begin_nested():
				outcome, changed = await self._dispatch(task, crop_id)
		except Exception as exc:
			logger.error(
				"task_processing_failed",
				task_id=str(task.id),
				task_name=task.task_name,
				crop_id=str(crop_id) if crop_id else None,
				error=str(exc),
			)
			outcome = TaskOutcome(task.id, task.task_name, crop_id, False, str(exc))
			changed = None

		task.is_active = False
		task.last_run_at = self.clock()
		await self.db.flush()
		return outcome, changed

	async def _resync_batches(self, crops: list[Crop]) -> None:
		seen: set[object] = set()
		for crop in crops:
			key = BatchCoordinator.batch_key(crop)
			if key in seen:
				continue
			seen.add(key)
			await self.crops.resync_batch(crop)

	async def _dispatch(
		self, task: TaskSchedule, crop_id: uuid.UUID | None
	) -> tuple[TaskOutcome, Crop | None]:
		if crop_id is None:
			return TaskOutcome(task.id, task.task_name, None, False, "Task has no crop_id"), None

		crop = await self.db.get(Crop, crop_id)
		if crop is None:
			raise UnknownReferenceError("crop", crop_id)

		# Missed work is stamped at its scheduled instant.
		at = min(task.next_run_at, self.clock())

		if task.task_name == CropTaskNameEnum.suspend_watering:
			members = await self.crops.lifecycle.suspend_watering(crop, at)
			return self._done(task, crop_id, members, "Watering suspended"), crop

		if task.task_name == CropTaskNameEnum.harvest_reminder:
			await self.crops.publisher.publish(
				CropEventEnum.harvest_due,
				[crop],
				task_id=task.id,
				expected_harvest_at=task.next_run_at,
				tray_numbers=task.conditions.get("tray_numbers"),
			)
			return self._done(task, crop_id, [crop], "Harvest reminder published"), None

		target = task.target_stage or task.conditions.get("target_stage")
		if not target:
			outcome = TaskOutcome(
				task.id, task.task_name, crop_id, False, "Invalid task conditions: missing target_stage"
			)
			return outcome, None
		goal = self.registry.by_code(target)
		current = self.crops.lifecycle.current_stage(crop)
		if not self.registry.is_before(current.code, goal.code):
			return self._done(task, crop_id, [], f"Crop already at or past {goal.code}"), None

		members = await self.crops.lifecycle.advance_to_stage(crop, goal.code, at)
		return self._done(task, crop_id, members, f"Batch advanced to {goal.code}"), crop

	@staticmethod
	def _crop_id(task: TaskSchedule) -> uuid.UUID | None:
		if task.crop_id is not None:
			return task.crop_id
		raw = (task.conditions or {}).get("crop_id")
		if not raw:
			return None
		try:
			return uuid.UUID(str(raw))
		except ValueError:
			return None

	@staticmethod
	def _done(
		task: TaskSchedule,
		crop_id: uuid.UUID,
		members: list[Crop],
		message: str,
	) -> TaskOutcome:
		return TaskOutcome(
			task.id,
			task.task_name,
			crop_id,
			True,
			message,
			[member.id for member in members],
		)
