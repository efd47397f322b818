"""Externally exposed crop operations: plant, advance, harvest, reschedule, delete.

Each operation validates first, mutates through the lifecycle service (which
keeps batches in lockstep), then resynchronises the batch's scheduled tasks
and recomputes display fields.  All writes share the caller's session, so the
task cancellation and the crop mutation commit or roll back together.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

import structlog
from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cropcycle.clock import Clock, utc_now
from cropcycle.config import get_settings
from cropcycle.exceptions import CropValidationError, UnknownReferenceError
from cropcycle.models.crops import Crop
from cropcycle.models.enums import CropEventEnum, StageCodeEnum
from cropcycle.models.recipe import Recipe
from cropcycle.models.tasks import TaskSchedule
from cropcycle.schemas.crops import CropBatchCreate, CropCreate
from cropcycle.services.batch_coordinator import BatchCoordinator
from cropcycle.services.events import CropEventPublisher
from cropcycle.services.inventory import InventoryLotClient
from cropcycle.services.lifecycle_service import CropLifecycleService
from cropcycle.services.stage_registry import StageRegistry
from cropcycle.services.task_factory import TaskFactory
from cropcycle.services.time_calculator import CropTimeCalculator
from cropcycle.services.validation_service import CropValidationService

logger = structlog.get_logger("cropcycle.crops")


class CropService:
	def __init__(
		self,
		db: AsyncSession,
		registry: StageRegistry | None = None,
		clock: Clock = utc_now,
		*,
		redis_client: Redis | None = None,
		inventory: InventoryLotClient | None = None,
		schedule_tasks: bool | None = None,
	):
		self.db = db
		self.registry = registry or StageRegistry.default()
		self.clock = clock
		self.publisher = CropEventPublisher(redis_client, clock)
		self.batch = BatchCoordinator(db)
		self.lifecycle = CropLifecycleService(
			db, self.registry, clock, batch=self.batch, publisher=self.publisher
		)
		self.tasks = TaskFactory(db, self.registry, clock, batch=self.batch)
		self.validation = CropValidationService(db, self.registry, clock, inventory=inventory)
		self.times = CropTimeCalculator(self.registry, clock)
		if schedule_tasks is None:
			schedule_tasks = get_settings().schedule_tasks_on_write
		self.schedule_tasks = schedule_tasks

	# ── Reads ───────────────────────────────────────────────────────────────

	async def get_crop(self, crop_id: uuid.UUID) -> Crop:
		crop = await self.db.get(Crop, crop_id)
		if crop is None:
			raise UnknownReferenceError("crop", crop_id)
		return crop

	async def get_recipe(self, recipe_id: uuid.UUID) -> Recipe:
		recipe = await self.db.get(Recipe, recipe_id)
		if recipe is None:
			raise UnknownReferenceError("recipe", recipe_id)
		return recipe

	async def list_crops(
		self,
		*,
		stage: StageCodeEnum | None = None,
		recipe_id: uuid.UUID | None = None,
		include_harvested: bool = True,
		limit: int = 100,
		offset: int = 0,
	) -> list[Crop]:
		stmt = select(Crop)
		if stage is not None:
			stmt = stmt.where(Crop.current_stage_id == self.registry.id_for(stage))
		if recipe_id is not None:
			stmt = stmt.where(Crop.recipe_id == recipe_id)
		if not include_harvested:
			stmt = stmt.where(Crop.current_stage_id != self.registry.terminal.id)
		stmt = stmt.order_by(Crop.planting_at.desc(), Crop.tray_number).limit(limit).offset(offset)
		rows = await self.db.execute(stmt)
		crops = list(rows.scalars().all())
		await self._refresh_display(crops)
		return crops

	async def read_crop(self, crop_id: uuid.UUID) -> Crop:
		crop = await self.get_crop(crop_id)
		await self._refresh_display([crop])
		return crop

	async def get_batch(self, crop_id: uuid.UUID) -> list[Crop]:
		crop = await self.get_crop(crop_id)
		members = await self.batch.members_of(crop)
		await self._refresh_display(members)
		return members

	async def list_tasks(self, crop_id: uuid.UUID, *, include_inactive: bool = False) -> list[TaskSchedule]:
		await self.get_crop(crop_id)
		return await self.tasks.list_tasks_for_crop(crop_id, include_inactive=include_inactive)

	# ── PlantCrop ───────────────────────────────────────────────────────────

	async def plant_crop(self, payload: CropCreate) -> Crop:
		recipe = await self._plantable_recipe(payload.recipe_id)
		crop = self._new_crop(
			recipe,
			tray_number=payload.tray_number,
			planting_at=payload.planting_at,
			tray_count=payload.tray_count,
			requires_soaking=payload.requires_soaking,
			batch_id=payload.batch_id,
			notes=payload.notes,
		)
		await self.validation.ensure_valid(crop)

		self.db.add(crop)
		await self.db.flush()
		await self._after_planting([crop], recipe)
		return crop

	async def plant_batch(self, payload: CropBatchCreate) -> list[Crop]:
		trays = [tray.strip() for tray in payload.tray_numbers]
		if len(set(trays)) != len(trays):
			raise CropValidationError("Tray numbers in a batch must be unique")

		recipe = await self._plantable_recipe(payload.recipe_id)
		planting_at = payload.planting_at or self.clock()
		batch_id = uuid.uuid4() if payload.assign_batch_id else None

		crops = [
			self._new_crop(
				recipe,
				tray_number=tray,
				planting_at=planting_at,
				tray_count=1,
				requires_soaking=payload.requires_soaking,
				batch_id=batch_id,
				notes=payload.notes,
			)
			for tray in trays
		]
		errors: list[str] = []
		for crop in crops:
			errors.extend(f"Tray {crop.tray_number}: {error}" for error in await self.validation.validate_crop(crop))
		if errors:
			raise CropValidationError(errors)

		async with self.batch.unit_of_work():
			self.db.add_all(crops)
		await self._after_planting(crops, recipe)
		return crops

	async def _plantable_recipe(self, recipe_id: uuid.UUID) -> Recipe:
		recipe = await self.get_recipe(recipe_id)
		errors = self.validation.validate_recipe(recipe)
		if not recipe.is_active:
			errors.append(f"Recipe '{recipe.name}' is inactive")
		if errors:
			raise CropValidationError(errors)
		await self.validation.ensure_lot_available(recipe)
		return recipe

	def _new_crop(
		self,
		recipe: Recipe,
		*,
		tray_number: str,
		planting_at: datetime | None,
		tray_count: int,
		requires_soaking: bool | None,
		batch_id: uuid.UUID | None,
		notes: str | None,
	) -> Crop:
		crop = Crop(
			id=uuid.uuid4(),
			recipe_id=recipe.id,
			batch_id=batch_id,
			tray_number=tray_number,
			tray_count=tray_count,
			requires_soaking=requires_soaking,
			planting_at=planting_at,
			notes=notes,
		)
		return self.validation.initialize_new_crop(crop, recipe)

	async def _after_planting(self, crops: Sequence[Crop], recipe: Recipe) -> None:
		if self.schedule_tasks:
			await self.tasks.schedule_all_stage_tasks(crops[0], recipe)
		for crop in crops:
			self.times.refresh(crop, recipe)
		logger.info(
			"crops_planted",
			recipe_id=str(recipe.id),
			tray_numbers=[crop.tray_number for crop in crops],
			planting_at=crops[0].planting_at.isoformat() if crops[0].planting_at else None,
		)
		await self.publisher.publish(CropEventEnum.planted, crops, variety=recipe.variety_name)

	# ── AdvanceCrop / reset ─────────────────────────────────────────────────

	async def advance_crop(
		self,
		crop_id: uuid.UUID,
		*,
		at: datetime | None = None,
		target_stage: StageCodeEnum | None = None,
	) -> list[Crop]:
		"""Manual advance; pending tasks for the batch are replaced."""
		crop = await self.get_crop(crop_id)
		if target_stage is None:
			members = await self.lifecycle.advance_stage(crop, at)
		else:
			members = await self.lifecycle.advance_to_stage(crop, target_stage, at)
		await self._resync(crop, members)
		return members

	async def reset_crop(self, crop_id: uuid.UUID, target_stage: StageCodeEnum) -> list[Crop]:
		crop = await self.get_crop(crop_id)
		members = await self.lifecycle.reset_to_stage(crop, target_stage)
		await self._resync(crop, members)
		return members

	# ── RecordHarvest ───────────────────────────────────────────────────────

	async def record_harvest(
		self,
		crop_id: uuid.UUID,
		weight_grams: float,
		harvested_at: datetime | None = None,
	) -> Crop:
		"""Move the batch to harvested and record the weight on this tray."""
		if weight_grams < 0:
			raise CropValidationError("Harvest weight must not be negative")
		crop = await self.get_crop(crop_id)
		moment = harvested_at or self.clock()

		members = await self.lifecycle.advance_to_stage(crop, self.registry.terminal.code, moment)
		if not self.registry.is_terminal(self.lifecycle.current_stage(crop).code):
			raise CropValidationError(
				f"Crop {crop.id} could not be advanced to {self.registry.terminal.code}"
			)
		crop.harvest_weight_grams = weight_grams
		await self.validation.ensure_valid(crop)
		await self.db.flush()

		await self._resync(crop, members)
		await self.publisher.publish(
			CropEventEnum.harvest_recorded,
			[crop],
			weight_grams=weight_grams,
			harvested_at=crop.harvested_at,
		)
		return crop

	# ── RescheduleCrop ──────────────────────────────────────────────────────

	async def reschedule_crop(self, crop_id: uuid.UUID, new_planting_at: datetime) -> Crop:
		"""Move planting and shift every recorded stage by the same delta.

		A tray grouped by an explicit ``batch_id`` moves together with its
		batch.  A tray grouped only by planting time leaves its old batch;
		tasks are rebuilt for the batch it joins and for the trays left behind.
		"""
		crop = await self.get_crop(crop_id)
		former = await self.batch.members_of(crop)
		movers = former if crop.batch_id is not None else [crop]
		previous = crop.planting_at

		shifted = 0
		for member in movers:
			before = member.planting_at
			member.planting_at = new_planting_at
			shifted += self.validation.adjust_stage_timestamps(member, before)
		errors: list[str] = []
		for member in movers:
			errors.extend(await self.validation.validate_crop(member))
		if errors:
			raise CropValidationError(errors)
		await self.db.flush()

		joined = await self.batch.members_of(crop)
		await self._resync(crop, joined)
		joined_ids = {member.id for member in joined}
		left_behind = [member for member in former if member.id not in joined_ids]
		if left_behind:
			await self._resync(left_behind[0], left_behind)

		await self.publisher.publish(
			CropEventEnum.rescheduled,
			movers,
			previous_planting_at=previous,
			planting_at=new_planting_at,
			shifted=shifted,
		)
		return crop

	# ── Watering ────────────────────────────────────────────────────────────

	async def suspend_watering(self, crop_id: uuid.UUID, at: datetime | None = None) -> list[Crop]:
		crop = await self.get_crop(crop_id)
		members = await self.lifecycle.suspend_watering(crop, at)
		await self._resync(crop, members)
		return members

	async def resume_watering(self, crop_id: uuid.UUID) -> list[Crop]:
		crop = await self.get_crop(crop_id)
		members = await self.lifecycle.resume_watering(crop)
		await self._resync(crop, members)
		return members

	# ── Deletion ────────────────────────────────────────────────────────────

	async def delete_crop(self, crop_id: uuid.UUID) -> int:
		"""Cancel the crop's tasks, then delete it; returns the cancelled count."""
		crop = await self.get_crop(crop_id)
		cancelled = await self.tasks.delete_tasks_for_crop(crop)
		await self.publisher.publish(CropEventEnum.deleted, [crop], cancelled_tasks=cancelled)
		await self.db.delete(crop)
		await self.db.flush()
		logger.info("crop_deleted", crop_id=str(crop_id), cancelled_tasks=cancelled)
		return cancelled

	# ── Helpers ─────────────────────────────────────────────────────────────

	async def resync_batch(self, crop: Crop) -> list[Crop]:
		members = await self.batch.members_of(crop)
		await self._resync(crop, members)
		return members

	async def _resync(self, crop: Crop, members: Sequence[Crop]) -> None:
		"""Replace the batch's pending tasks and recompute display fields."""
		recipe = await self.db.get(Recipe, crop.recipe_id)
		for member in members:
			await self.tasks.delete_tasks_for_crop(member)
		if self.schedule_tasks and recipe is not None:
			await self.tasks.schedule_all_stage_tasks(members[0] if members else crop, recipe)
		for member in members:
			self.times.refresh(member, recipe)

	async def _refresh_display(self, crops: Sequence[Crop]) -> None:
		recipes: dict[uuid.UUID, Recipe | None] = {}
		for crop in crops:
			if crop.recipe_id not in recipes:
				recipes[crop.recipe_id] = await self.db.get(Recipe, crop.recipe_id)
			self.times.refresh(crop, recipes[crop.recipe_id])

	def stage_code(self, crop: Crop) -> StageCodeEnum | None:
		if not self.registry.has_id(crop.current_stage_id):
			return None
		return self.registry.by_id(crop.current_stage_id).code
