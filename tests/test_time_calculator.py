from __future__ import annotations

from datetime import timedelta

import pytest

from cropcycle.services.time_calculator import OVERDUE, CropTimeCalculator, format_time_display

from conftest import NOW, make_crop, make_recipe


@pytest.mark.parametrize(
	("minutes", "expected"),
	[
		(0, "0m"),
		(45, "45m"),
		(180, "3h"),
		(195, "3h 15m"),
		(2 * 1440 + 8 * 60, "2d 8h"),
		(3 * 1440, "3d"),
		(9 * 1440, "1w 2d"),
		(14 * 1440, "2w"),
		(None, None),
	],
)
def test_format_time_display(minutes: int | None, expected: str | None) -> None:
	assert format_time_display(minutes) == expected


@pytest.fixture
def times(registry, clock) -> CropTimeCalculator:
	return CropTimeCalculator(registry, clock)


def test_refresh_fills_every_display_field(times, recipe, clock) -> None:
	crop = make_crop(recipe)
	clock.advance(days=1)

	times.refresh(crop, recipe)

	assert crop.stage_age_minutes == 1440
	assert crop.stage_age_display == "1d"
	assert crop.total_age_display == "1d"
	assert crop.time_to_next_stage_minutes == 2 * 1440
	assert crop.time_to_next_stage_display == "2d"
	assert crop.expected_harvest_at == NOW + timedelta(days=12)


def test_missed_transition_reads_overdue(times, recipe, clock) -> None:
	crop = make_crop(recipe)
	clock.advance(days=3, hours=2)

	times.refresh(crop, recipe)

	assert crop.time_to_next_stage_minutes == 0
	assert crop.time_to_next_stage_display == OVERDUE
	assert crop.stage_age_display == "3d 2h"


def test_total_age_counts_from_soaking(times, clock) -> None:
	recipe = make_recipe(seed_soak_hours=6)
	crop = make_crop(recipe, requires_soaking=True, soaking_at=NOW)
	clock.advance(hours=2)

	times.refresh(crop, recipe)

	assert crop.total_age_display == "2h"
	assert crop.time_to_next_stage_display == "4h"


def test_harvested_crop_has_no_countdown(times, recipe, clock) -> None:
	crop = make_crop(
		recipe,
		blackout_at=NOW + timedelta(days=3),
		light_at=NOW + timedelta(days=5),
		harvested_at=NOW + timedelta(days=12),
	)
	clock.advance(days=13)

	times.refresh(crop, recipe)

	assert crop.time_to_next_stage_minutes is None
	assert crop.time_to_next_stage_display is None
	assert crop.stage_age_display == "1d"
	assert crop.total_age_display == "1w 6d"


def test_refresh_without_recipe_keeps_ages_only(times, clock) -> None:
	crop = make_crop(make_recipe())
	clock.advance(minutes=30)

	times.refresh(crop, None)

	assert crop.stage_age_display == "30m"
	assert crop.time_to_next_stage_display is None
	assert crop.expected_harvest_at is None


def test_clear_resets_display_fields(times, recipe) -> None:
	crop = make_crop(recipe)
	times.refresh(crop, recipe)
	CropTimeCalculator.clear(crop)
	assert crop.stage_age_display is None
	assert crop.expected_harvest_at is None
