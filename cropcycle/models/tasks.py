"""TaskSchedule ORM model: time-triggered instructions against crops."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cropcycle.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from cropcycle.models.enums import TaskFrequencyEnum, TaskResourceEnum


class TaskSchedule(Base, UUIDPrimaryKeyMixin, TimestampMixin):
	"""A future action (stage transition, watering suspension, harvest reminder).

	``conditions`` carries the payload the runner needs to act on the crop or
	its whole batch.  At most one *active* task may exist per
	``(crop_id, task_name, resource_type)``.
	"""

	__tablename__ = "task_schedules"
	__table_args__ = (
		Index(
			"uq_task_schedules_active_crop_task",
			"crop_id",
			"task_name",
			"resource_type",
			unique=True,
			postgresql_where=text("is_active"),
		),
		Index("ix_task_schedules_due", "is_active", "next_run_at"),
	)

	resource_type: Mapped[str] = mapped_column(
		String(50),
		nullable=False,
		default=TaskResourceEnum.crops.value,
		server_default=TaskResourceEnum.crops.value,
	)
	task_name: Mapped[str] = mapped_column(String(100), nullable=False)
	name: Mapped[str] = mapped_column(String(255), nullable=False)
	crop_id: Mapped[uuid.UUID | None] = mapped_column(
		UUID(as_uuid=True),
		ForeignKey("crops.id", ondelete="SET NULL"),
		nullable=True,
	)
	target_stage: Mapped[str | None] = mapped_column(String(32), nullable=True)
	frequency: Mapped[str] = mapped_column(
		String(20),
		nullable=False,
		default=TaskFrequencyEnum.once.value,
		server_default=TaskFrequencyEnum.once.value,
	)
	conditions: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
	scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
	next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
	last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
	is_active: Mapped[bool] = mapped_column(
		default=True,
		server_default=text("true"),
		nullable=False,
	)

	def __repr__(self) -> str:
		return (
			f"<TaskSchedule id={self.id} task={self.task_name!r} crop={self.crop_id} "
			f"next_run_at={self.next_run_at} active={self.is_active}>"
		)
