"""Batch membership and all-or-nothing batch mutation.

Batch members must always share stage and watering state.  Every batch
mutation validates all members first and only then writes them inside a
single savepoint, so a failure part-way leaves no member changed.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cropcycle.models.crops import Crop

logger = structlog.get_logger("cropcycle.batch")

BatchKey = tuple[object, ...]


class BatchCoordinator:
	def __init__(self, db: AsyncSession):
		self.db = db

	@staticmethod
	def batch_key(crop: Crop) -> BatchKey:
		if crop.batch_id is not None:
			return ("batch", crop.batch_id)
		return ("planting", crop.recipe_id, crop.planting_at)

	@staticmethod
	def batch_identifier(crop: Crop) -> str:
		"""Stable string form of the batch key, stored in task conditions."""
		if crop.batch_id is not None:
			return f"batch:{crop.batch_id}"
		planted = crop.planting_at.isoformat() if crop.planting_at is not None else "unplanted"
		return f"{crop.recipe_id}_{planted}"

	async def members_of(self, crop: Crop) -> list[Crop]:
		"""All crops in the same batch, the given crop included."""
		if crop.batch_id is not None:
			stmt = select(Crop).where(Crop.batch_id == crop.batch_id)
		elif crop.planting_at is None:
			return [crop]
		else:
			stmt = select(Crop).where(
				Crop.recipe_id == crop.recipe_id,
				Crop.planting_at == crop.planting_at,
				Crop.batch_id.is_(None),
			)
		rows = await self.db.execute(stmt.order_by(Crop.tray_number))
		members = list(rows.scalars().all())
		if not any(member.id == crop.id for member in members):
			members.insert(0, crop)
		return members

	@asynccontextmanager
	async def unit_of_work(self) -> AsyncIterator[None]:
		async with self.db.begin_nested():
			yield
			await self.db.flush()

	async def apply(
		self,
		crop: Crop,
		mutate: Callable[[Crop], bool],
		*,
		validate: Callable[[Crop], None] | None = None,
		action: str = "batch_update",
	) -> list[Crop]:
		"""Apply ``mutate`` to every batch member; ``mutate`` returns whether it changed the member."""
		members = await self.members_of(crop)
		if validate is not None:
			for member in members:
				validate(member)

		changed = 0
		try:
			async with self.unit_of_work():
				for member in members:
					if mutate(member):
						changed += 1
		except Exception as exc:
			logger.error(
				"batch_update_failed",
				action=action,
				initiating_crop_id=str(crop.id),
				batch_size=len(members),
				error=str(exc),
			)
			raise

		logger.info(
			"batch_updated",
			action=action,
			initiating_crop_id=str(crop.id),
			batch_size=len(members),
			changed=changed,
			unchanged=len(members) - changed,
			recipe_id=str(crop.recipe_id),
		)
		return members
