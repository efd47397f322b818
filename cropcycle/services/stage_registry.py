"""Ordered lookup of growth stages.

Every component that needs to know "how far along" a crop is goes through
the registry rather than comparing raw ids: the order comes from
``crop_stages.sort_order``, not from the primary key.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cropcycle.exceptions import UnknownReferenceError
from cropcycle.models.crops import CropStage
from cropcycle.models.enums import StageCodeEnum

logger = structlog.get_logger("cropcycle.stage_registry")

STAGE_TIMESTAMP_FIELDS: dict[StageCodeEnum, str] = {
	StageCodeEnum.soaking: "soaking_at",
	StageCodeEnum.germination: "germination_at",
	StageCodeEnum.blackout: "blackout_at",
	StageCodeEnum.light: "light_at",
	StageCodeEnum.harvested: "harvested_at",
}


@dataclass(frozen=True, slots=True)
class StageDefinition:
	id: int
	code: StageCodeEnum
	name: str
	sort_order: int

	@property
	def timestamp_field(self) -> str:
		return STAGE_TIMESTAMP_FIELDS[self.code]


DEFAULT_STAGES: tuple[StageDefinition, ...] = (
	StageDefinition(id=1, code=StageCodeEnum.soaking, name="Soaking", sort_order=1),
	StageDefinition(id=2, code=StageCodeEnum.germination, name="Germination", sort_order=2),
	StageDefinition(id=3, code=StageCodeEnum.blackout, name="Blackout", sort_order=3),
	StageDefinition(id=4, code=StageCodeEnum.light, name="Light", sort_order=4),
	StageDefinition(id=5, code=StageCodeEnum.harvested, name="Harvested", sort_order=5),
)


class StageRegistry:
	"""Immutable, totally ordered set of stage definitions."""

	def __init__(self, stages: Iterable[StageDefinition]):
		ordered = tuple(sorted(stages, key=lambda stage: (stage.sort_order, stage.id)))
		if not ordered:
			raise ValueError("stage registry requires at least one stage")
		self._stages = ordered
		self._by_id = {stage.id: stage for stage in ordered}
		self._by_code = {stage.code: stage for stage in ordered}
		self._position = {stage.code: index for index, stage in enumerate(ordered)}
		if len(self._by_code) != len(ordered):
			raise ValueError("stage codes must be unique")

	@classmethod
	def default(cls) -> StageRegistry:
		return cls(DEFAULT_STAGES)

	@classmethod
	def from_rows(cls, rows: Iterable[CropStage]) -> StageRegistry:
		stages: list[StageDefinition] = []
		for row in rows:
			try:
				code = StageCodeEnum(row.code)
			except ValueError:
				logger.warning("stage_registry_unknown_code", stage_id=row.id, code=row.code)
				continue
			stages.append(
				StageDefinition(id=row.id, code=code, name=row.name, sort_order=row.sort_order)
			)
		return cls(stages)

	@property
	def ordered(self) -> tuple[StageDefinition, ...]:
		return self._stages

	@property
	def terminal(self) -> StageDefinition:
		return self._stages[-1]

	@property
	def default_stage(self) -> StageDefinition:
		"""Stage assumed for a crop with no stage timestamp: it exists, so it is planted."""
		return self._by_code.get(StageCodeEnum.germination, self._stages[0])

	def has_id(self, stage_id: int | None) -> bool:
		return stage_id is not None and stage_id in self._by_id

	def by_id(self, stage_id: int | None) -> StageDefinition:
		stage = self._by_id.get(stage_id) if stage_id is not None else None
		if stage is None:
			raise UnknownReferenceError("stage", stage_id)
		return stage

	def by_code(self, code: StageCodeEnum | str) -> StageDefinition:
		try:
			stage = self._by_code.get(StageCodeEnum(code))
		except ValueError:
			stage = None
		if stage is None:
			raise UnknownReferenceError("stage", code)
		return stage

	def id_for(self, code: StageCodeEnum | str) -> int:
		return self.by_code(code).id

	def position(self, code: StageCodeEnum | str) -> int:
		return self._position[self.by_code(code).code]

	def is_before(self, first: StageCodeEnum | str, second: StageCodeEnum | str) -> bool:
		return self.position(first) < self.position(second)

	def is_terminal(self, code: StageCodeEnum | str) -> bool:
		return self.by_code(code).code == self.terminal.code

	def next_stage(self, code: StageCodeEnum | str) -> StageDefinition | None:
		index = self.position(code) + 1
		return self._stages[index] if index < len(self._stages) else None

	def later_stages(self, code: StageCodeEnum | str) -> tuple[StageDefinition, ...]:
		return self._stages[self.position(code) + 1 :]

	def stages_between(
		self,
		start: StageCodeEnum | str,
		end: StageCodeEnum | str,
	) -> tuple[StageDefinition, ...]:
		"""Stages after ``start`` up to and including ``end``."""
		return self._stages[self.position(start) + 1 : self.position(end) + 1]

	def __iter__(self):  # type: ignore[no-untyped-def]
		return iter(self._stages)

	def __len__(self) -> int:
		return len(self._stages)


_registry_cache: StageRegistry | None = None


async def load_stage_registry(db: AsyncSession, *, refresh: bool = False) -> StageRegistry:
	"""Load active stages once per process; fall back to the seeded defaults."""
	global _registry_cache
	if _registry_cache is not None and not refresh:
		return _registry_cache

	rows = await db.execute(
		select(CropStage).where(CropStage.is_active.is_(True)).order_by(CropStage.sort_order)
	)
	stages = list(rows.scalars().all())
	if stages:
		registry = StageRegistry.from_rows(stages)
	else:
		logger.warning("stage_registry_empty_table", fallback="defaults")
		registry = StageRegistry.default()

	_registry_cache = registry
	return registry


def reset_stage_registry_cache() -> None:
	global _registry_cache
	_registry_cache = None
