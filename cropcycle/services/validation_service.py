"""Integrity rules and default initialisation for crops and recipes.

Nothing here writes to the database; callers run these checks before any
mutation reaches the session.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from cropcycle.clock import Clock, utc_now
from cropcycle.exceptions import CropValidationError
from cropcycle.models.crops import Crop
from cropcycle.models.recipe import Recipe
from cropcycle.services.inventory import InventoryLotClient
from cropcycle.services.stage_calculator import CropStageCalculator, stage_timestamps
from cropcycle.services.stage_registry import STAGE_TIMESTAMP_FIELDS, StageRegistry
from cropcycle.services.time_calculator import CropTimeCalculator

logger = structlog.get_logger("cropcycle.validation")


class CropValidationService:
	def __init__(
		self,
		db: AsyncSession,
		registry: StageRegistry | None = None,
		clock: Clock = utc_now,
		*,
		inventory: InventoryLotClient | None = None,
	):
		self.db = db
		self.registry = registry or StageRegistry.default()
		self.clock = clock
		self.calculator = CropStageCalculator(self.registry)
		self.inventory = inventory or InventoryLotClient()

	def initialize_new_crop(self, crop: Crop, recipe: Recipe | None = None) -> Crop:
		"""Fill planting/stage defaults and the cached stage id for a new crop.

		Soaking crops start at ``soaking_at = planting_at``; every other crop
		starts germinating at planting.  Display fields are cleared until the
		next recompute.
		"""
		if crop.requires_soaking is None:
			crop.requires_soaking = bool(recipe is not None and recipe.requires_soaking)
		if crop.tray_count is None:
			crop.tray_count = 1
		if crop.planting_at is None:
			crop.planting_at = self.clock()

		if crop.requires_soaking:
			if crop.soaking_at is None:
				crop.soaking_at = crop.planting_at
		elif crop.germination_at is None:
			crop.germination_at = crop.planting_at

		crop.current_stage_id = self.calculator.calculate_stage_id(stage_timestamps(crop))
		CropTimeCalculator.clear(crop)
		return crop

	def adjust_stage_timestamps(self, crop: Crop, previous_planting_at: datetime | None) -> int:
		"""Shift every set stage timestamp by the change in ``planting_at``.

		Each stage keeps its offset from planting.  Returns how many
		timestamps moved.
		"""
		if previous_planting_at is None or crop.planting_at is None:
			return 0
		delta = crop.planting_at - previous_planting_at
		if not delta:
			return 0

		shifted = 0
		for field in STAGE_TIMESTAMP_FIELDS.values():
			value = getattr(crop, field)
			if value is not None:
				setattr(crop, field, value + delta)
				shifted += 1
		if crop.watering_suspended_at is not None:
			crop.watering_suspended_at = crop.watering_suspended_at + delta

		logger.info(
			"crop_timestamps_shifted",
			crop_id=str(crop.id),
			delta_seconds=delta.total_seconds(),
			shifted=shifted,
		)
		return shifted

	async def validate_crop(self, crop: Crop) -> list[str]:
		errors: list[str] = []
		if crop.tray_count is not None and crop.tray_count <= 0:
			errors.append("Tray count must be greater than zero")
		if crop.harvest_weight_grams is not None and crop.harvest_weight_grams < 0:
			errors.append("Harvest weight must not be negative")
		if not (crop.tray_number or "").strip():
			errors.append("Tray number is required")

		if crop.recipe_id is None:
			errors.append("Recipe is required")
		elif await self.db.get(Recipe, crop.recipe_id) is None:
			errors.append("Invalid recipe selected")

		if crop.current_stage_id is not None and not self.registry.has_id(crop.current_stage_id):
			errors.append("Invalid growth stage")

		errors.extend(self.calculator.validate_timestamp_sequence(stage_timestamps(crop)))
		planting = crop.planting_at
		if planting is not None:
			for code, value in stage_timestamps(crop).items():
				if value is not None and value < planting:
					errors.append(f"Stage '{code}' timestamp cannot be earlier than planting")
		return errors

	@staticmethod
	def validate_recipe(recipe: Recipe) -> list[str]:
		errors: list[str] = []
		for field in ("germination_days", "blackout_days", "light_days"):
			value = getattr(recipe, field)
			if value is not None and value < 0:
				errors.append(f"Recipe {field.replace('_', ' ')} must not be negative")
		if recipe.seed_soak_hours is not None and recipe.seed_soak_hours < 0:
			errors.append("Recipe seed soak hours must not be negative")
		if recipe.suspend_water_hours is not None and recipe.suspend_water_hours < 0:
			errors.append("Recipe suspend water hours must not be negative")
		if recipe.days_to_maturity is not None and recipe.days_to_maturity < 0:
			errors.append("Recipe days to maturity must not be negative")
		return errors

	async def ensure_valid(self, crop: Crop) -> None:
		errors = await self.validate_crop(crop)
		if errors:
			logger.info("crop_validation_failed", crop_id=str(crop.id), errors=errors)
			raise CropValidationError(errors)

	async def ensure_lot_available(self, recipe: Recipe) -> None:
		if not recipe.lot_number:
			return
		if await self.inventory.is_lot_depleted(recipe.lot_number):
			raise CropValidationError(
				f"Seed lot {recipe.lot_number} for recipe '{recipe.name}' is depleted"
			)
