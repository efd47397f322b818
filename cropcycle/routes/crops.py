"""Crop lifecycle routes: plant, advance, harvest, reschedule, reset, watering."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cropcycle.database import get_db
from cropcycle.dependencies import get_stage_registry
from cropcycle.models.crops import Crop
from cropcycle.models.enums import StageCodeEnum
from cropcycle.routes.errors import map_error
from cropcycle.schemas.crops import (
	AdvanceRequest,
	CropBatchCreate,
	CropBatchRead,
	CropCreate,
	CropDeleteResponse,
	CropRead,
	HarvestRequest,
	RescheduleRequest,
	ResetRequest,
	WateringRequest,
)
from cropcycle.schemas.tasks import TaskScheduleRead
from cropcycle.services.batch_coordinator import BatchCoordinator
from cropcycle.services.crop_service import CropService
from cropcycle.services.stage_registry import StageRegistry

router = APIRouter(prefix="/crops", tags=["crops"])


def _service(request: Request, db: AsyncSession, registry: StageRegistry) -> CropService:
	return CropService(db, registry, redis_client=getattr(request.app.state, "redis", None))


def _to_crop_read(crop: Crop, service: CropService) -> CropRead:
	return CropRead.model_validate(crop).model_copy(update={"current_stage": service.stage_code(crop)})


def _to_crop_reads(crops: list[Crop], service: CropService) -> list[CropRead]:
	return [_to_crop_read(crop, service) for crop in crops]


@router.post("", response_model=CropRead, status_code=status.HTTP_201_CREATED)
async def plant_crop(
	payload: CropCreate,
	request: Request,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> CropRead:
	service = _service(request, db, registry)
	try:
		crop = await service.plant_crop(payload)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_read(crop, service)


@router.post("/batch", response_model=list[CropRead], status_code=status.HTTP_201_CREATED)
async def plant_batch(
	payload: CropBatchCreate,
	request: Request,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> list[CropRead]:
	service = _service(request, db, registry)
	try:
		crops = await service.plant_batch(payload)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_reads(crops, service)


@router.get("", response_model=list[CropRead])
async def list_crops(
	request: Request,
	stage: StageCodeEnum | None = Query(default=None),
	recipe_id: uuid.UUID | None = Query(default=None),
	include_harvested: bool = Query(default=True),
	limit: int = Query(default=100, ge=1, le=500),
	offset: int = Query(default=0, ge=0),
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> list[CropRead]:
	service = _service(request, db, registry)
	try:
		crops = await service.list_crops(
			stage=stage,
			recipe_id=recipe_id,
			include_harvested=include_harvested,
			limit=limit,
			offset=offset,
		)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_reads(crops, service)


@router.get("/{crop_id}", response_model=CropRead)
async def get_crop(
	crop_id: uuid.UUID,
	request: Request,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> CropRead:
	service = _service(request, db, registry)
	try:
		crop = await service.read_crop(crop_id)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_read(crop, service)


@router.get("/{crop_id}/batch", response_model=CropBatchRead)
async def get_crop_batch(
	crop_id: uuid.UUID,
	request: Request,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> CropBatchRead:
	service = _service(request, db, registry)
	try:
		members = await service.get_batch(crop_id)
	except Exception as exc:
		raise map_error(exc) from exc
	return CropBatchRead(
		batch_identifier=BatchCoordinator.batch_identifier(members[0]),
		tray_numbers=[member.tray_number for member in members],
		crops=_to_crop_reads(members, service),
	)


@router.get("/{crop_id}/tasks", response_model=list[TaskScheduleRead])
async def list_crop_tasks(
	crop_id: uuid.UUID,
	request: Request,
	include_inactive: bool = Query(default=False),
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> list[TaskScheduleRead]:
	service = _service(request, db, registry)
	try:
		tasks = await service.list_tasks(crop_id, include_inactive=include_inactive)
	except Exception as exc:
		raise map_error(exc) from exc
	return [TaskScheduleRead.model_validate(task) for task in tasks]


@router.post("/{crop_id}/advance", response_model=list[CropRead])
async def advance_crop(
	crop_id: uuid.UUID,
	request: Request,
	payload: AdvanceRequest | None = None,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> list[CropRead]:
	payload = payload or AdvanceRequest()
	service = _service(request, db, registry)
	try:
		members = await service.advance_crop(
			crop_id, at=payload.at, target_stage=payload.target_stage
		)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_reads(members, service)


@router.post("/{crop_id}/harvest", response_model=CropRead)
async def record_harvest(
	crop_id: uuid.UUID,
	payload: HarvestRequest,
	request: Request,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> CropRead:
	service = _service(request, db, registry)
	try:
		crop = await service.record_harvest(crop_id, payload.weight_grams, payload.harvested_at)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_read(crop, service)


@router.post("/{crop_id}/reschedule", response_model=CropRead)
async def reschedule_crop(
	crop_id: uuid.UUID,
	payload: RescheduleRequest,
	request: Request,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> CropRead:
	service = _service(request, db, registry)
	try:
		crop = await service.reschedule_crop(crop_id, payload.planting_at)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_read(crop, service)


@router.post("/{crop_id}/reset", response_model=list[CropRead])
async def reset_crop(
	crop_id: uuid.UUID,
	payload: ResetRequest,
	request: Request,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> list[CropRead]:
	service = _service(request, db, registry)
	try:
		members = await service.reset_crop(crop_id, payload.target_stage)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_reads(members, service)


@router.post("/{crop_id}/watering/suspend", response_model=list[CropRead])
async def suspend_watering(
	crop_id: uuid.UUID,
	request: Request,
	payload: WateringRequest | None = None,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> list[CropRead]:
	service = _service(request, db, registry)
	try:
		members = await service.suspend_watering(crop_id, payload.at if payload else None)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_reads(members, service)


@router.post("/{crop_id}/watering/resume", response_model=list[CropRead])
async def resume_watering(
	crop_id: uuid.UUID,
	request: Request,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> list[CropRead]:
	service = _service(request, db, registry)
	try:
		members = await service.resume_watering(crop_id)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_crop_reads(members, service)


@router.delete("/{crop_id}", response_model=CropDeleteResponse)
async def delete_crop(
	crop_id: uuid.UUID,
	request: Request,
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> CropDeleteResponse:
	service = _service(request, db, registry)
	try:
		cancelled = await service.delete_crop(crop_id)
	except Exception as exc:
		raise map_error(exc) from exc
	return CropDeleteResponse(crop_id=crop_id, cancelled_tasks=cancelled)
