"""Scheduled task listing and due-task processing routes."""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cropcycle.clock import utc_now
from cropcycle.config import get_settings
from cropcycle.database import async_session_factory, get_db
from cropcycle.dependencies import get_stage_registry
from cropcycle.models.tasks import TaskSchedule
from cropcycle.routes.errors import map_error
from cropcycle.schemas.tasks import (
	ProcessDueAccepted,
	ProcessDueResponse,
	TaskOutcomeRead,
	TaskScheduleRead,
)
from cropcycle.services.crop_service import CropService
from cropcycle.services.stage_registry import StageRegistry
from cropcycle.services.task_runner import TaskOutcome, TaskRunner

router = APIRouter(prefix="/tasks", tags=["tasks"])

logger = structlog.get_logger("cropcycle.routes.tasks")


def _to_response(outcomes: list[TaskOutcome]) -> ProcessDueResponse:
	succeeded = sum(1 for outcome in outcomes if outcome.success)
	return ProcessDueResponse(
		processed=len(outcomes),
		succeeded=succeeded,
		failed=len(outcomes) - succeeded,
		outcomes=[
			TaskOutcomeRead(
				task_id=outcome.task_id,
				task_name=outcome.task_name,
				crop_id=outcome.crop_id,
				success=outcome.success,
				message=outcome.message,
				affected_crop_ids=outcome.affected_crop_ids,
			)
			for outcome in outcomes
		],
	)


async def _run_due_tasks(limit: int, registry: StageRegistry, redis_client: object | None) -> None:
	async with async_session_factory() as session:
		runner = TaskRunner(CropService(session, registry, redis_client=redis_client))  # type: ignore[arg-type]
		try:
			await runner.process_due_tasks(limit)
			await session.commit()
		except Exception as exc:
			logger.error("background_task_run_failed", error=str(exc))
			await session.rollback()


@router.get("", response_model=list[TaskScheduleRead])
async def list_tasks(
	active_only: bool = Query(default=True),
	due_before: datetime | None = Query(default=None),
	limit: int = Query(default=100, ge=1, le=500),
	db: AsyncSession = Depends(get_db),
) -> list[TaskScheduleRead]:
	stmt = select(TaskSchedule)
	if active_only:
		stmt = stmt.where(TaskSchedule.is_active.is_(True))
	if due_before is not None:
		stmt = stmt.where(TaskSchedule.next_run_at <= due_before)
	rows = await db.execute(stmt.order_by(TaskSchedule.next_run_at.asc()).limit(limit))
	return [TaskScheduleRead.model_validate(task) for task in rows.scalars().all()]


@router.post("/process-due", response_model=ProcessDueResponse)
async def process_due_tasks(
	request: Request,
	limit: int | None = Query(default=None, ge=1, le=1000),
	db: AsyncSession = Depends(get_db),
	registry: StageRegistry = Depends(get_stage_registry),
) -> ProcessDueResponse:
	runner = TaskRunner(CropService(db, registry, redis_client=getattr(request.app.state, "redis", None)))
	try:
		outcomes = await runner.process_due_tasks(limit or get_settings().task_runner_batch_size)
	except Exception as exc:
		raise map_error(exc) from exc
	return _to_response(outcomes)


@router.post(
	"/process-due/background",
	response_model=ProcessDueAccepted,
	status_code=status.HTTP_202_ACCEPTED,
)
async def process_due_tasks_in_background(
	request: Request,
	background_tasks: BackgroundTasks,
	limit: int | None = Query(default=None, ge=1, le=1000),
	registry: StageRegistry = Depends(get_stage_registry),
) -> ProcessDueAccepted:
	batch_size = limit or get_settings().task_runner_batch_size
	background_tasks.add_task(
		_run_due_tasks, batch_size, registry, getattr(request.app.state, "redis", None)
	)
	return ProcessDueAccepted(status="queued", limit=batch_size, requested_at=utc_now())
