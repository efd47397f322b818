"""Pydantic schemas for scheduled crop tasks and runner results."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class TaskScheduleRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: uuid.UUID
	resource_type: str
	task_name: str
	name: str
	crop_id: uuid.UUID | None
	target_stage: str | None
	frequency: str
	conditions: dict[str, Any]
	scheduled_at: datetime
	next_run_at: datetime
	last_run_at: datetime | None
	is_active: bool


class TaskOutcomeRead(BaseModel):
	task_id: uuid.UUID
	task_name: str
	crop_id: uuid.UUID | None
	success: bool
	message: str
	affected_crop_ids: list[uuid.UUID] = []


class ProcessDueResponse(BaseModel):
	processed: int
	succeeded: int
	failed: int
	outcomes: list[TaskOutcomeRead]


class ProcessDueAccepted(BaseModel):
	status: str
	limit: int
	requested_at: datetime
