"""Recipe-driven time arithmetic shared by the lifecycle, scheduling and display code.

A stage whose configured duration is zero (or negative, which recipe
validation rejects anyway) is not applicable: crops skip straight past it.
The terminal stage is always applicable.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from cropcycle.models.crops import Crop
from cropcycle.models.enums import StageCodeEnum
from cropcycle.models.recipe import Recipe
from cropcycle.services.stage_registry import StageDefinition, StageRegistry

_ZERO = timedelta(0)


def stage_duration(recipe: Recipe, code: StageCodeEnum | str) -> timedelta | None:
	"""Configured length of a stage; ``None`` for the terminal stage."""
	stage = StageCodeEnum(code)
	if stage == StageCodeEnum.soaking:
		return timedelta(hours=float(recipe.seed_soak_hours or 0))
	if stage == StageCodeEnum.germination:
		return timedelta(days=float(recipe.germination_days or 0))
	if stage == StageCodeEnum.blackout:
		return timedelta(days=float(recipe.blackout_days or 0))
	if stage == StageCodeEnum.light:
		return timedelta(days=float(recipe.light_days or 0))
	return None


def _positive_duration(recipe: Recipe, code: StageCodeEnum | str) -> timedelta:
	duration = stage_duration(recipe, code)
	if duration is None or duration < _ZERO:
		return _ZERO
	return duration


def is_applicable(registry: StageRegistry, recipe: Recipe, code: StageCodeEnum | str) -> bool:
	if registry.is_terminal(code):
		return True
	return _positive_duration(recipe, code) > _ZERO


def next_applicable_stage(
	registry: StageRegistry,
	recipe: Recipe,
	current: StageCodeEnum | str,
) -> StageDefinition | None:
	for stage in registry.later_stages(current):
		if is_applicable(registry, recipe, stage.code):
			return stage
	return None


def germination_anchor(crop: Crop, recipe: Recipe | None) -> datetime | None:
	"""When germination starts (or started) relative to planting."""
	if crop.planting_at is None:
		return None
	if crop.requires_soaking and recipe is not None:
		return crop.planting_at + _positive_duration(recipe, StageCodeEnum.soaking)
	return crop.planting_at


def expected_harvest_date(crop: Crop, recipe: Recipe | None) -> datetime | None:
	if recipe is None:
		return None
	anchor = germination_anchor(crop, recipe)
	if anchor is None:
		return None
	return anchor + timedelta(days=recipe.total_days)


def stage_start(crop: Crop, stage: StageDefinition, recipe: Recipe | None) -> datetime | None:
	started = getattr(crop, stage.timestamp_field)
	if started is not None:
		return started
	if stage.code == StageCodeEnum.germination:
		return germination_anchor(crop, recipe)
	if stage.code == StageCodeEnum.soaking:
		return crop.planting_at
	return None


def project_stage_timeline(
	crop: Crop,
	recipe: Recipe,
	registry: StageRegistry,
	current: StageDefinition,
) -> dict[StageCodeEnum, datetime]:
	"""Projected start of every stage after ``current``.

	Boundaries chain from the actual start of the current stage, so a crop
	that was advanced early or late is projected from where it really is.
	``days_to_maturity`` moves the harvest boundary but never before the
	start of the last growing stage.
	"""
	started = stage_start(crop, current, recipe)
	if started is None or registry.is_terminal(current.code):
		return {}

	timeline: dict[StageCodeEnum, datetime] = {}
	last_boundary = started
	cursor = started + _positive_duration(recipe, current.code)
	for stage in registry.later_stages(current.code):
		if registry.is_terminal(stage.code):
			harvest_at = cursor
			if recipe.days_to_maturity is not None and recipe.days_to_maturity > 0:
				override = expected_harvest_date(crop, recipe)
				if override is not None:
					harvest_at = max(override, last_boundary)
			timeline[stage.code] = harvest_at
			break
		if not is_applicable(registry, recipe, stage.code):
			continue
		timeline[stage.code] = cursor
		last_boundary = cursor
		cursor = cursor + _positive_duration(recipe, stage.code)
	return timeline
