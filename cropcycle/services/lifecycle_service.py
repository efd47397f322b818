"""Stage transitions, corrections and watering state for crops.

Every mutation here goes through the batch coordinator: a crop is never
advanced, reset or (un)suspended on its own while it has siblings.  Stage
timestamps are sequence-checked for every member before anything is written.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from cropcycle.clock import Clock, utc_now
from cropcycle.exceptions import UnknownReferenceError
from cropcycle.models.crops import Crop
from cropcycle.models.enums import CropEventEnum, StageCodeEnum
from cropcycle.models.recipe import Recipe
from cropcycle.services.batch_coordinator import BatchCoordinator
from cropcycle.services.events import CropEventPublisher
from cropcycle.services.growth_timeline import expected_harvest_date, next_applicable_stage
from cropcycle.services.stage_calculator import CropStageCalculator, stage_timestamps
from cropcycle.services.stage_registry import StageDefinition, StageRegistry

logger = structlog.get_logger("cropcycle.lifecycle")


class CropLifecycleService:
	def __init__(
		self,
		db: AsyncSession,
		registry: StageRegistry | None = None,
		clock: Clock = utc_now,
		*,
		batch: BatchCoordinator | None = None,
		publisher: CropEventPublisher | None = None,
	):
		self.db = db
		self.registry = registry or StageRegistry.default()
		self.clock = clock
		self.calculator = CropStageCalculator(self.registry)
		self.batch = batch or BatchCoordinator(db)
		self.publisher = publisher or CropEventPublisher(clock=clock)

	# ── Lookups ─────────────────────────────────────────────────────────────

	async def require_recipe(self, crop: Crop) -> Recipe:
		recipe = await self.db.get(Recipe, crop.recipe_id)
		if recipe is None:
			raise UnknownReferenceError("recipe", crop.recipe_id)
		return recipe

	def current_stage(self, crop: Crop) -> StageDefinition:
		return self.calculator.calculate_stage(stage_timestamps(crop))

	# ── Transitions ─────────────────────────────────────────────────────────

	async def advance_stage(self, crop: Crop, at: datetime | None = None) -> list[Crop]:
		"""Move the crop's batch to the next applicable stage.

		Stages whose recipe duration is zero are skipped.  A crop already in
		the terminal stage is returned unchanged.
		"""
		current = self.current_stage(crop)
		if self.registry.is_terminal(current.code):
			logger.debug("advance_noop_terminal", crop_id=str(crop.id), stage=current.code)
			return [crop]

		recipe = await self.require_recipe(crop)
		target = next_applicable_stage(self.registry, recipe, current.code)
		if target is None:
			return [crop]
		return await self._move_batch_to(crop, current, target, at or self.clock())

	async def advance_to_stage(
		self,
		crop: Crop,
		target: StageCodeEnum | str,
		at: datetime | None = None,
	) -> list[Crop]:
		"""Advance repeatedly until ``target`` is reached or would be overshot."""
		goal = self.registry.by_code(target)
		recipe = await self.require_recipe(crop)
		moment = at or self.clock()
		members = [crop]
		for _ in range(len(self.registry)):
			current = self.current_stage(crop)
			if not self.registry.is_before(current.code, goal.code):
				break
			following = next_applicable_stage(self.registry, recipe, current.code)
			if following is None or self.registry.is_before(goal.code, following.code):
				break
			members = await self._move_batch_to(crop, current, following, moment)
		return members

	async def _move_batch_to(
		self,
		crop: Crop,
		current: StageDefinition,
		target: StageDefinition,
		at: datetime,
	) -> list[Crop]:
		def behind(member: Crop) -> bool:
			return self.registry.is_before(self.current_stage(member).code, target.code)

		def validate(member: Crop) -> None:
			if not behind(member):
				return
			timestamps = stage_timestamps(member)
			timestamps[target.code] = at
			self.calculator.check_timestamp_sequence(timestamps)

		def mutate(member: Crop) -> bool:
			if not behind(member):
				return False
			setattr(member, target.timestamp_field, at)
			self.calculator.update_crop_stage(member)
			return True

		members = await self.batch.apply(
			crop, mutate, validate=validate, action=f"advance_to_{target.code}"
		)
		logger.info(
			"crop_stage_advanced",
			crop_id=str(crop.id),
			from_stage=current.code,
			to_stage=target.code,
			batch_size=len(members),
		)
		await self.publisher.publish(
			CropEventEnum.stage_advanced,
			members,
			from_stage=current.code.value,
			to_stage=target.code.value,
			at=at,
		)
		return members

	async def reset_to_stage(self, crop: Crop, target: StageCodeEnum | str) -> list[Crop]:
		"""Correct the batch back to ``target``: later timestamps are cleared,
		earlier ones kept, and the target's own timestamp set to now if missing.
		"""
		goal = self.registry.by_code(target)
		later = self.registry.later_stages(goal.code)
		now = self.clock()

		def corrected(member: Crop) -> dict[StageCodeEnum, datetime | None]:
			timestamps = stage_timestamps(member)
			for stage in later:
				timestamps[stage.code] = None
			if timestamps[goal.code] is None:
				timestamps[goal.code] = now
			return timestamps

		def validate(member: Crop) -> None:
			self.calculator.check_timestamp_sequence(corrected(member))

		def mutate(member: Crop) -> bool:
			changed = False
			for code, value in corrected(member).items():
				field = self.registry.by_code(code).timestamp_field
				if getattr(member, field) != value:
					setattr(member, field, value)
					changed = True
			if member.current_stage_id != goal.id:
				member.current_stage_id = goal.id
				changed = True
			return changed

		members = await self.batch.apply(
			crop, mutate, validate=validate, action=f"reset_to_{goal.code}"
		)
		logger.info(
			"crop_stage_reset",
			crop_id=str(crop.id),
			to_stage=goal.code,
			cleared=[stage.code.value for stage in later],
		)
		await self.publisher.publish(CropEventEnum.stage_reset, members, to_stage=goal.code.value)
		return members

	# ── Watering ────────────────────────────────────────────────────────────

	async def suspend_watering(self, crop: Crop, at: datetime | None = None) -> list[Crop]:
		moment = at or self.clock()

		def mutate(member: Crop) -> bool:
			if member.watering_suspended_at is not None:
				return False
			member.watering_suspended_at = moment
			return True

		members = await self.batch.apply(crop, mutate, action="suspend_watering")
		await self.publisher.publish(CropEventEnum.watering_suspended, members, at=moment)
		return members

	async def resume_watering(self, crop: Crop) -> list[Crop]:
		def mutate(member: Crop) -> bool:
			if member.watering_suspended_at is None:
				return False
			member.watering_suspended_at = None
			return True

		members = await self.batch.apply(crop, mutate, action="resume_watering")
		await self.publisher.publish(CropEventEnum.watering_resumed, members)
		return members

	def should_suspend_watering(self, crop: Crop, recipe: Recipe) -> bool:
		"""Whether the suspension instant has passed for a still-watered, growing crop."""
		hours = float(recipe.suspend_water_hours or 0)
		if hours <= 0 or crop.watering_suspended_at is not None:
			return False
		if self.registry.is_terminal(self.current_stage(crop).code):
			return False
		harvest_at = expected_harvest_date(crop, recipe)
		if harvest_at is None:
			return False
		return self.clock() >= harvest_at - timedelta(hours=hours)

	# ── Derived values ──────────────────────────────────────────────────────

	async def calculate_expected_harvest_date(
		self,
		crop: Crop,
		recipe: Recipe | None = None,
	) -> datetime | None:
		if recipe is None:
			recipe = await self.db.get(Recipe, crop.recipe_id)
		return expected_harvest_date(crop, recipe)

	def calculate_days_in_current_stage(self, crop: Crop) -> int:
		stage = self.current_stage(crop)
		started = getattr(crop, stage.timestamp_field)
		if started is None:
			return 0
		return max((self.clock() - started).days, 0)
