from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest

from cropcycle.exceptions import SequenceViolationError, UnknownReferenceError
from cropcycle.models.enums import StageCodeEnum
from cropcycle.services.stage_calculator import CropStageCalculator
from cropcycle.services.stage_registry import StageDefinition, StageRegistry

from conftest import NOW, make_crop, make_recipe


@pytest.mark.parametrize("code", list(StageCodeEnum))
def test_single_timestamp_selects_its_stage(code: StageCodeEnum) -> None:
	calculator = CropStageCalculator()
	assert calculator.calculate_stage({code: NOW}).code == code


def test_highest_order_timestamp_wins() -> None:
	calculator = CropStageCalculator()
	timestamps = {
		StageCodeEnum.germination: NOW,
		StageCodeEnum.blackout: NOW + timedelta(days=3),
	}
	assert calculator.calculate_stage(timestamps).code == StageCodeEnum.blackout
	assert calculator.calculate_stage_id(timestamps) == 3


def test_no_timestamps_defaults_to_germination() -> None:
	calculator = CropStageCalculator()
	assert calculator.calculate_stage({}).code == StageCodeEnum.germination
	assert calculator.calculate_stage({StageCodeEnum.light: None}).code == StageCodeEnum.germination


def test_update_crop_stage_reports_change_only_once() -> None:
	crop = make_crop(make_recipe())
	calculator = CropStageCalculator()
	assert calculator.update_crop_stage(crop) is False

	crop.blackout_at = NOW + timedelta(days=3)
	assert calculator.update_crop_stage(crop) is True
	assert crop.current_stage_id == 3
	assert calculator.update_crop_stage(crop) is False


def test_sequence_violation_names_both_stages() -> None:
	calculator = CropStageCalculator()
	errors = calculator.validate_timestamp_sequence(
		{
			StageCodeEnum.germination: NOW,
			StageCodeEnum.blackout: NOW - timedelta(hours=1),
		}
	)
	assert len(errors) == 1
	assert "'blackout'" in errors[0]
	assert "'germination'" in errors[0]

	with pytest.raises(SequenceViolationError) as excinfo:
		calculator.check_timestamp_sequence({"germination": NOW, "blackout": NOW - timedelta(hours=1)})
	assert excinfo.value.errors == errors


def test_monotonic_sequence_has_no_errors() -> None:
	calculator = CropStageCalculator()
	timestamps = {
		StageCodeEnum.soaking: NOW,
		StageCodeEnum.germination: NOW + timedelta(hours=8),
		StageCodeEnum.blackout: NOW + timedelta(days=3),
		StageCodeEnum.light: NOW + timedelta(days=3),
		StageCodeEnum.harvested: NOW + timedelta(days=12),
	}
	assert calculator.validate_timestamp_sequence(timestamps) == []


def test_non_adjacent_pairs_are_checked() -> None:
	calculator = CropStageCalculator()
	errors = calculator.validate_timestamp_sequence(
		{
			StageCodeEnum.germination: NOW + timedelta(days=5),
			StageCodeEnum.harvested: NOW,
		}
	)
	assert errors and "'harvested'" in errors[0]


def test_registry_orders_by_sort_order_not_id() -> None:
	registry = StageRegistry(
		[
			StageDefinition(id=10, code=StageCodeEnum.light, name="Light", sort_order=3),
			StageDefinition(id=2, code=StageCodeEnum.germination, name="Germination", sort_order=1),
			StageDefinition(id=7, code=StageCodeEnum.harvested, name="Harvested", sort_order=4),
			StageDefinition(id=1, code=StageCodeEnum.blackout, name="Blackout", sort_order=2),
		]
	)
	assert [stage.code for stage in registry] == [
		StageCodeEnum.germination,
		StageCodeEnum.blackout,
		StageCodeEnum.light,
		StageCodeEnum.harvested,
	]
	assert registry.terminal.id == 7
	assert registry.next_stage("blackout").code == StageCodeEnum.light
	assert registry.next_stage("harvested") is None
	assert registry.is_before("germination", "light")


def test_registry_unknown_lookups_raise() -> None:
	registry = StageRegistry.default()
	with pytest.raises(UnknownReferenceError):
		registry.by_id(99)
	with pytest.raises(UnknownReferenceError):
		registry.by_code("flowering")
	assert registry.has_id(99) is False


def test_registry_from_rows_skips_unknown_codes() -> None:
	rows = [
		SimpleNamespace(id=1, code="germination", name="Germination", sort_order=1),
		SimpleNamespace(id=2, code="mystery", name="Mystery", sort_order=2),
		SimpleNamespace(id=3, code="harvested", name="Harvested", sort_order=3),
	]
	registry = StageRegistry.from_rows(rows)  # type: ignore[arg-type]
	assert len(registry) == 2
	assert registry.later_stages("germination")[0].code == StageCodeEnum.harvested
