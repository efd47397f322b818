"""Derived age / countdown fields shown alongside every crop."""

from __future__ import annotations

from datetime import datetime

from cropcycle.clock import Clock, utc_now
from cropcycle.models.crops import Crop
from cropcycle.models.recipe import Recipe
from cropcycle.services.growth_timeline import (
	expected_harvest_date,
	project_stage_timeline,
	stage_start,
)
from cropcycle.services.stage_calculator import CropStageCalculator, stage_timestamps
from cropcycle.services.stage_registry import StageRegistry

OVERDUE = "Overdue"


def format_time_display(minutes: int | None) -> str | None:
	"""Compact duration: ``45m``, ``3h 15m``, ``2d 8h``, ``1w 2d``."""
	if minutes is None:
		return None
	if minutes < 60:
		return f"{minutes}m"

	hours, rest = divmod(minutes, 60)
	if hours < 24:
		return f"{hours}h {rest}m" if rest else f"{hours}h"

	days, rest = divmod(hours, 24)
	if days < 7:
		return f"{days}d {rest}h" if rest else f"{days}d"

	weeks, rest = divmod(days, 7)
	return f"{weeks}w {rest}d" if rest else f"{weeks}w"


def _minutes_between(start: datetime, end: datetime) -> int:
	return int((end - start).total_seconds() // 60)


class CropTimeCalculator:
	def __init__(self, registry: StageRegistry | None = None, clock: Clock = utc_now):
		self.registry = registry or StageRegistry.default()
		self.clock = clock
		self.calculator = CropStageCalculator(self.registry)

	def next_transition_at(self, crop: Crop, recipe: Recipe | None) -> datetime | None:
		if recipe is None:
			return None
		current = self.calculator.calculate_stage(stage_timestamps(crop))
		timeline = project_stage_timeline(crop, recipe, self.registry, current)
		return min(timeline.values(), default=None)

	def refresh(self, crop: Crop, recipe: Recipe | None) -> Crop:
		"""Recompute the display fields in place and return the crop."""
		now = self.clock()
		current = self.calculator.calculate_stage(stage_timestamps(crop))

		started = stage_start(crop, current, recipe)
		if started is not None:
			crop.stage_age_minutes = max(_minutes_between(started, now), 0)
		else:
			crop.stage_age_minutes = None
		crop.stage_age_display = format_time_display(crop.stage_age_minutes)

		origin = crop.soaking_at or crop.germination_at or crop.planting_at
		if origin is not None:
			crop.total_age_minutes = max(_minutes_between(origin, now), 0)
		else:
			crop.total_age_minutes = None
		crop.total_age_display = format_time_display(crop.total_age_minutes)

		transition_at = None
		if not self.registry.is_terminal(current.code):
			transition_at = self.next_transition_at(crop, recipe)
		if transition_at is None:
			crop.time_to_next_stage_minutes = None
			crop.time_to_next_stage_display = None
		else:
			remaining = _minutes_between(now, transition_at)
			crop.time_to_next_stage_minutes = max(remaining, 0)
			crop.time_to_next_stage_display = (
				format_time_display(remaining) if remaining > 0 else OVERDUE
			)

		crop.expected_harvest_at = expected_harvest_date(crop, recipe)
		return crop

	@staticmethod
	def clear(crop: Crop) -> None:
		crop.stage_age_minutes = None
		crop.stage_age_display = None
		crop.time_to_next_stage_minutes = None
		crop.time_to_next_stage_display = None
		crop.total_age_minutes = None
		crop.total_age_display = None
		crop.expected_harvest_at = None
