from __future__ import annotations

import json
import uuid
from datetime import timedelta

import pytest

from cropcycle.exceptions import SequenceViolationError, UnknownReferenceError
from cropcycle.models.enums import StageCodeEnum
from cropcycle.services.events import CropEventPublisher
from cropcycle.services.lifecycle_service import CropLifecycleService

from conftest import NOW, FrozenClock, make_crop, make_recipe


@pytest.fixture
def lifecycle(in_memory_queries, registry, clock, fake_redis) -> CropLifecycleService:
	return CropLifecycleService(
		in_memory_queries,
		registry,
		clock,
		publisher=CropEventPublisher(fake_redis, clock),
	)


@pytest.mark.asyncio
async def test_expected_harvest_is_planting_plus_stage_days(lifecycle, recipe) -> None:
	crop = make_crop(recipe)
	assert await lifecycle.calculate_expected_harvest_date(crop) == NOW + timedelta(days=12)


@pytest.mark.asyncio
async def test_expected_harvest_prefers_days_to_maturity(lifecycle, fake_db_session) -> None:
	recipe = make_recipe(days_to_maturity=10)
	fake_db_session.add(recipe)
	crop = make_crop(recipe)
	assert await lifecycle.calculate_expected_harvest_date(crop) == NOW + timedelta(days=10)


@pytest.mark.asyncio
async def test_expected_harvest_without_recipe_is_none(lifecycle) -> None:
	crop = make_crop(make_recipe())
	assert await lifecycle.calculate_expected_harvest_date(crop) is None


@pytest.mark.asyncio
async def test_soaking_crop_harvest_is_anchored_after_the_soak(lifecycle, fake_db_session) -> None:
	recipe = make_recipe(seed_soak_hours=12)
	fake_db_session.add(recipe)
	crop = make_crop(recipe, requires_soaking=True, soaking_at=NOW)
	assert crop.current_stage_id == 1
	assert await lifecycle.calculate_expected_harvest_date(crop) == NOW + timedelta(hours=12, days=12)


@pytest.mark.asyncio
async def test_three_advances_reach_harvested_in_order(lifecycle, recipe, clock: FrozenClock) -> None:
	crop = make_crop(recipe)
	lifecycle.db.add(crop)

	clock.advance(days=3)
	await lifecycle.advance_stage(crop)
	clock.advance(days=2)
	await lifecycle.advance_stage(crop)
	clock.advance(days=7)
	await lifecycle.advance_stage(crop)

	assert lifecycle.current_stage(crop).code == StageCodeEnum.harvested
	assert crop.current_stage_id == 5
	assert crop.germination_at < crop.blackout_at < crop.light_at < crop.harvested_at
	assert crop.harvested_at == NOW + timedelta(days=12)


@pytest.mark.asyncio
async def test_zero_duration_stage_is_skipped(lifecycle, fake_db_session, clock) -> None:
	recipe = make_recipe(blackout_days=0)
	fake_db_session.add(recipe)
	crop = make_crop(recipe)
	fake_db_session.add(crop)

	clock.advance(days=3)
	await lifecycle.advance_stage(crop)

	assert lifecycle.current_stage(crop).code == StageCodeEnum.light
	assert crop.blackout_at is None
	assert crop.light_at == clock.now


@pytest.mark.asyncio
async def test_negative_duration_is_skipped_like_zero(lifecycle, fake_db_session) -> None:
	recipe = make_recipe(blackout_days=-1)
	fake_db_session.add(recipe)
	crop = make_crop(recipe)
	fake_db_session.add(crop)

	await lifecycle.advance_stage(crop, at=NOW + timedelta(days=3))
	assert lifecycle.current_stage(crop).code == StageCodeEnum.light


@pytest.mark.asyncio
async def test_advancing_terminal_crop_is_a_noop(lifecycle, recipe, fake_redis) -> None:
	crop = make_crop(
		recipe,
		blackout_at=NOW + timedelta(days=3),
		light_at=NOW + timedelta(days=5),
		harvested_at=NOW + timedelta(days=12),
	)
	lifecycle.db.add(crop)
	before = crop.harvested_at

	members = await lifecycle.advance_stage(crop)

	assert members == [crop]
	assert crop.harvested_at == before
	fake_redis.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_advance_without_recipe_raises(lifecycle, fake_db_session) -> None:
	crop = make_crop(make_recipe())
	fake_db_session.add(crop)
	with pytest.raises(UnknownReferenceError):
		await lifecycle.advance_stage(crop)


@pytest.mark.asyncio
async def test_advance_propagates_to_whole_batch(lifecycle, recipe, fake_db_session, fake_redis) -> None:
	trays = [make_crop(recipe, tray_number=label) for label in ("A1", "A2", "A3")]
	fake_db_session.add_all(trays)
	unrelated = make_crop(recipe, tray_number="B1", planting_at=NOW + timedelta(hours=1))
	fake_db_session.add(unrelated)

	at = NOW + timedelta(days=3)
	members = await lifecycle.advance_stage(trays[1], at=at)

	assert {member.id for member in members} == {tray.id for tray in trays}
	assert {tray.current_stage_id for tray in trays} == {3}
	assert {tray.blackout_at for tray in trays} == {at}
	assert unrelated.blackout_at is None
	assert fake_db_session.savepoints == 1

	channel, raw = fake_redis.publish.await_args.args
	payload = json.loads(raw)
	assert channel == "crops:events"
	assert payload["event_type"] == "stage_advanced"
	assert payload["to_stage"] == "blackout"
	assert sorted(payload["tray_numbers"]) == ["A1", "A2", "A3"]


@pytest.mark.asyncio
async def test_explicit_batch_id_groups_across_planting_times(lifecycle, recipe, fake_db_session) -> None:
	batch_id = uuid.uuid4()
	first = make_crop(recipe, tray_number="A1", batch_id=batch_id)
	second = make_crop(recipe, tray_number="A2", batch_id=batch_id, planting_at=NOW + timedelta(minutes=5))
	fake_db_session.add_all([first, second])

	await lifecycle.advance_stage(first, at=NOW + timedelta(days=3))
	assert second.current_stage_id == first.current_stage_id == 3


@pytest.mark.asyncio
async def test_batch_failure_leaves_every_member_unchanged(lifecycle, recipe, fake_db_session) -> None:
	good = make_crop(recipe, tray_number="A1")
	bad = make_crop(recipe, tray_number="A2", germination_at=NOW + timedelta(days=5))
	fake_db_session.add_all([good, bad])

	with pytest.raises(SequenceViolationError):
		await lifecycle.advance_stage(good, at=NOW + timedelta(days=3))

	assert good.blackout_at is None and bad.blackout_at is None
	assert good.current_stage_id == bad.current_stage_id == 2
	assert fake_db_session.savepoints == 0


@pytest.mark.asyncio
async def test_reset_to_blackout_clears_later_stages(lifecycle, recipe) -> None:
	crop = make_crop(
		recipe,
		blackout_at=NOW + timedelta(days=3),
		light_at=NOW + timedelta(days=5),
		harvested_at=NOW + timedelta(days=12),
	)
	lifecycle.db.add(crop)

	await lifecycle.reset_to_stage(crop, "blackout")

	assert crop.germination_at == NOW
	assert crop.blackout_at == NOW + timedelta(days=3)
	assert crop.light_at is None
	assert crop.harvested_at is None
	assert crop.current_stage_id == 3


@pytest.mark.asyncio
async def test_reset_sets_missing_target_timestamp(lifecycle, fake_db_session, clock) -> None:
	recipe = make_recipe(blackout_days=0)
	fake_db_session.add(recipe)
	crop = make_crop(recipe, light_at=NOW + timedelta(days=3))
	fake_db_session.add(crop)
	clock.advance(days=4)

	await lifecycle.reset_to_stage(crop, StageCodeEnum.blackout)

	assert crop.blackout_at == clock.now
	assert crop.light_at is None
	assert lifecycle.current_stage(crop).code == StageCodeEnum.blackout


@pytest.mark.asyncio
async def test_advance_to_stage_walks_intermediate_stages(lifecycle, recipe) -> None:
	crop = make_crop(recipe)
	lifecycle.db.add(crop)
	at = NOW + timedelta(days=6)

	await lifecycle.advance_to_stage(crop, StageCodeEnum.light, at)

	assert crop.blackout_at == at
	assert crop.light_at == at
	assert crop.harvested_at is None


@pytest.mark.asyncio
async def test_watering_suspension_is_batch_wide(lifecycle, recipe, fake_db_session, clock) -> None:
	earlier = NOW - timedelta(hours=1)
	first = make_crop(recipe, tray_number="A1", watering_suspended_at=earlier)
	second = make_crop(recipe, tray_number="A2")
	fake_db_session.add_all([first, second])

	await lifecycle.suspend_watering(second)
	assert first.watering_suspended_at == earlier
	assert second.watering_suspended_at == clock.now

	await lifecycle.resume_watering(first)
	assert first.watering_suspended_at is None
	assert second.watering_suspended_at is None


@pytest.mark.asyncio
async def test_days_in_current_stage(lifecycle, recipe, clock) -> None:
	crop = make_crop(recipe)
	clock.advance(days=2, hours=20)
	assert lifecycle.calculate_days_in_current_stage(crop) == 2

	crop.germination_at = None
	crop.planting_at = None
	assert lifecycle.calculate_days_in_current_stage(crop) == 0


def test_should_suspend_watering_after_offset(lifecycle, recipe, clock) -> None:
	crop = make_crop(recipe)
	clock.advance(days=10, hours=23)
	assert lifecycle.should_suspend_watering(crop, recipe) is False
	clock.advance(hours=1)
	assert lifecycle.should_suspend_watering(crop, recipe) is True
	crop.watering_suspended_at = clock.now
	assert lifecycle.should_suspend_watering(crop, recipe) is False
