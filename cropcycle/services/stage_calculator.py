"""Derive a crop's current stage from its stage timestamps.

The highest-order stage whose timestamp is set wins; a crop with no stage
timestamp at all is in germination (it exists, so it has been planted).
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from itertools import combinations

from cropcycle.exceptions import SequenceViolationError
from cropcycle.models.crops import Crop
from cropcycle.models.enums import StageCodeEnum
from cropcycle.services.stage_registry import (
	STAGE_TIMESTAMP_FIELDS,
	StageDefinition,
	StageRegistry,
)

StageTimestamps = Mapping[StageCodeEnum | str, datetime | None]

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def stage_timestamps(crop: Crop) -> dict[StageCodeEnum, datetime | None]:
	return {code: getattr(crop, field) for code, field in STAGE_TIMESTAMP_FIELDS.items()}


class CropStageCalculator:
	def __init__(self, registry: StageRegistry | None = None):
		self.registry = registry or StageRegistry.default()

	def calculate_stage(self, timestamps: StageTimestamps) -> StageDefinition:
		for stage in reversed(self.registry.ordered):
			if timestamps.get(stage.code) is not None:
				return stage
		return self.registry.default_stage

	def calculate_stage_id(self, timestamps: StageTimestamps) -> int:
		return self.calculate_stage(timestamps).id

	def update_crop_stage(self, crop: Crop) -> bool:
		"""Write ``current_stage_id`` when it differs; return whether it changed."""
		calculated = self.calculate_stage_id(stage_timestamps(crop))
		if crop.current_stage_id != calculated:
			crop.current_stage_id = calculated
			return True
		return False

	def validate_timestamp_sequence(self, timestamps: StageTimestamps) -> list[str]:
		present = [
			(stage, timestamps[stage.code])
			for stage in self.registry.ordered
			if timestamps.get(stage.code) is not None
		]
		errors: list[str] = []
		for (earlier, earlier_at), (later, later_at) in combinations(present, 2):
			if earlier_at > later_at:  # type: ignore[operator]
				errors.append(
					f"Stage '{later.code}' timestamp ({later_at:{_TIMESTAMP_FORMAT}}) cannot be "
					f"earlier than '{earlier.code}' timestamp ({earlier_at:{_TIMESTAMP_FORMAT}})"
				)
		return errors

	def check_timestamp_sequence(self, timestamps: StageTimestamps) -> None:
		errors = self.validate_timestamp_sequence(timestamps)
		if errors:
			raise SequenceViolationError(errors)
