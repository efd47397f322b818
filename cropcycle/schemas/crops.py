"""Pydantic request/response schemas for crops and stages."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from cropcycle.models.enums import StageCodeEnum


class CropCreate(BaseModel):
	recipe_id: uuid.UUID
	tray_number: str = Field(min_length=1, max_length=50)
	planting_at: datetime | None = None
	tray_count: int = Field(default=1, gt=0)
	requires_soaking: bool | None = None
	batch_id: uuid.UUID | None = None
	notes: str | None = None


class CropBatchCreate(BaseModel):
	"""Several trays planted together from one recipe at one instant."""

	recipe_id: uuid.UUID
	tray_numbers: list[str] = Field(min_length=1)
	planting_at: datetime | None = None
	requires_soaking: bool | None = None
	assign_batch_id: bool = True
	notes: str | None = None


class AdvanceRequest(BaseModel):
	at: datetime | None = None
	target_stage: StageCodeEnum | None = None


class HarvestRequest(BaseModel):
	weight_grams: float = Field(ge=0)
	harvested_at: datetime | None = None


class RescheduleRequest(BaseModel):
	planting_at: datetime


class ResetRequest(BaseModel):
	target_stage: StageCodeEnum


class WateringRequest(BaseModel):
	at: datetime | None = None


class StageRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: int
	code: StageCodeEnum
	name: str
	sort_order: int


class CropRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: uuid.UUID
	recipe_id: uuid.UUID
	batch_id: uuid.UUID | None = None
	tray_number: str
	tray_count: int
	requires_soaking: bool
	notes: str | None = None
	planting_at: datetime | None
	soaking_at: datetime | None
	germination_at: datetime | None
	blackout_at: datetime | None
	light_at: datetime | None
	harvested_at: datetime | None
	current_stage_id: int
	current_stage: StageCodeEnum | None = None
	watering_suspended_at: datetime | None
	harvest_weight_grams: float | None
	stage_age_minutes: int | None = None
	stage_age_display: str | None = None
	time_to_next_stage_minutes: int | None = None
	time_to_next_stage_display: str | None = None
	total_age_minutes: int | None = None
	total_age_display: str | None = None
	expected_harvest_at: datetime | None = None
	created_at: datetime | None = None
	updated_at: datetime | None = None


class CropBatchRead(BaseModel):
	batch_identifier: str
	tray_numbers: list[str]
	crops: list[CropRead]


class CropDeleteResponse(BaseModel):
	crop_id: uuid.UUID
	cancelled_tasks: int
