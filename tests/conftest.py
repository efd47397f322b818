"""Shared pytest fixtures: in-memory session, frozen clock, recipe/crop factories, API client."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from cropcycle.database import get_db
from cropcycle.dependencies import get_stage_registry
from cropcycle.main import app
from cropcycle.models.crops import Crop
from cropcycle.models.recipe import Recipe
from cropcycle.models.tasks import TaskSchedule
from cropcycle.services.batch_coordinator import BatchCoordinator
from cropcycle.services.stage_calculator import CropStageCalculator, stage_timestamps
from cropcycle.services.stage_registry import StageRegistry
from cropcycle.services.task_factory import TaskFactory
from cropcycle.services.task_runner import TaskRunner

NOW = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)


class FrozenClock:
	def __init__(self, now: datetime = NOW) -> None:
		self.now = now

	def __call__(self) -> datetime:
		return self.now

	def advance(self, **delta: float) -> datetime:
		self.now = self.now + timedelta(**delta)
		return self.now


class FakeScalars:
	def __init__(self, items: list[Any]) -> None:
		self._items = items

	def all(self) -> list[Any]:
		return list(self._items)

	def first(self) -> Any:
		return self._items[0] if self._items else None


class FakeResult:
	def __init__(self, items: list[Any] | None = None) -> None:
		self._items = items or []

	def scalars(self) -> FakeScalars:
		return FakeScalars(self._items)

	def scalar_one_or_none(self) -> Any:
		return self._items[0] if self._items else None


class FakeAsyncSession:
	"""Identity-map stand-in for AsyncSession: add/get/delete over a dict."""

	def __init__(self) -> None:
		self.objects: dict[tuple[type, Any], Any] = {}
		self.deleted: list[Any] = []
		self.savepoints = 0
		self.commit = AsyncMock()
		self.rollback = AsyncMock()
		self.close = AsyncMock()
		self.flush = AsyncMock()
		self.execute = AsyncMock(return_value=FakeResult())

	def add(self, obj: Any) -> None:
		if getattr(obj, "id", None) is None:
			obj.id = uuid.uuid4()
		self.objects[(type(obj), obj.id)] = obj

	def add_all(self, objs: list[Any]) -> None:
		for obj in objs:
			self.add(obj)

	async def get(self, model: type, ident: Any) -> Any:
		return self.objects.get((model, ident))

	async def delete(self, obj: Any) -> None:
		self.objects.pop((type(obj), obj.id), None)
		self.deleted.append(obj)

	@asynccontextmanager
	async def begin_nested(self) -> AsyncIterator[None]:
		self.savepoints += 1
		yield

	def all_of(self, model: type) -> list[Any]:
		return [obj for (kind, _), obj in self.objects.items() if kind is model]

	def crops(self) -> list[Crop]:
		return self.all_of(Crop)

	def tasks(self, *, active_only: bool = True) -> list[TaskSchedule]:
		tasks = self.all_of(TaskSchedule)
		if active_only:
			tasks = [task for task in tasks if task.is_active]
		return sorted(tasks, key=lambda task: task.next_run_at)


class FakeRedis:
	def __init__(self) -> None:
		self.publish = AsyncMock(return_value=1)


@pytest.fixture
def clock() -> FrozenClock:
	return FrozenClock()


@pytest.fixture
def registry() -> StageRegistry:
	return StageRegistry.default()


@pytest.fixture
def fake_db_session() -> FakeAsyncSession:
	return FakeAsyncSession()


@pytest.fixture
def fake_redis() -> FakeRedis:
	return FakeRedis()


@pytest.fixture
def in_memory_queries(monkeypatch: pytest.MonkeyPatch, fake_db_session: FakeAsyncSession) -> FakeAsyncSession:
	"""Route the SQL-backed lookups of the services through the fake session."""
	session = fake_db_session

	async def members_of(self: BatchCoordinator, crop: Crop) -> list[Crop]:
		key = BatchCoordinator.batch_key(crop)
		if crop.batch_id is None and crop.planting_at is None:
			return [crop]
		members = [other for other in session.crops() if BatchCoordinator.batch_key(other) == key]
		if not any(member.id == crop.id for member in members):
			members.append(crop)
		return sorted(members, key=lambda member: member.tray_number)

	async def find_active_task(self: TaskFactory, crop_id: uuid.UUID, task_name: Any) -> TaskSchedule | None:
		for task in session.tasks():
			if task.crop_id == crop_id and task.task_name == str(task_name):
				return task
		return None

	async def active_tasks_for_crop(self: TaskFactory, crop_id: uuid.UUID) -> list[TaskSchedule]:
		return [
			task
			for task in session.tasks()
			if task.crop_id == crop_id or task.conditions.get("crop_id") == str(crop_id)
		]

	async def list_tasks_for_crop(
		self: TaskFactory, crop_id: uuid.UUID, *, include_inactive: bool = False
	) -> list[TaskSchedule]:
		return [
			task
			for task in session.tasks(active_only=not include_inactive)
			if task.crop_id == crop_id or task.conditions.get("crop_id") == str(crop_id)
		]

	async def due_tasks(self: TaskRunner, limit: int = 100) -> list[TaskSchedule]:
		now = self.clock()
		return [task for task in session.tasks() if task.next_run_at <= now][:limit]

	monkeypatch.setattr(BatchCoordinator, "members_of", members_of)
	monkeypatch.setattr(TaskFactory, "_find_active_task", find_active_task)
	monkeypatch.setattr(TaskFactory, "_active_tasks_for_crop", active_tasks_for_crop)
	monkeypatch.setattr(TaskFactory, "list_tasks_for_crop", list_tasks_for_crop)
	monkeypatch.setattr(TaskRunner, "due_tasks", due_tasks)
	return session


def make_recipe(
	*,
	germination_days: float = 3,
	blackout_days: float = 2,
	light_days: float = 7,
	seed_soak_hours: float = 0,
	suspend_water_hours: float = 24,
	days_to_maturity: float | None = None,
	lot_number: str | None = None,
	name: str = "Sunflower",
) -> Recipe:
	return Recipe(
		id=uuid.uuid4(),
		name=name,
		common_name=name,
		cultivar_name="Black Oil",
		germination_days=germination_days,
		blackout_days=blackout_days,
		light_days=light_days,
		seed_soak_hours=seed_soak_hours,
		suspend_water_hours=suspend_water_hours,
		days_to_maturity=days_to_maturity,
		lot_number=lot_number,
		is_active=True,
	)


def make_crop(
	recipe: Recipe,
	*,
	tray_number: str = "A1",
	planting_at: datetime | None = NOW,
	batch_id: uuid.UUID | None = None,
	requires_soaking: bool = False,
	**stamps: datetime | None,
) -> Crop:
	crop = Crop(
		id=uuid.uuid4(),
		recipe_id=recipe.id,
		batch_id=batch_id,
		tray_number=tray_number,
		tray_count=1,
		requires_soaking=requires_soaking,
		planting_at=planting_at,
		soaking_at=stamps.get("soaking_at"),
		germination_at=stamps.get("germination_at", planting_at if not requires_soaking else None),
		blackout_at=stamps.get("blackout_at"),
		light_at=stamps.get("light_at"),
		harvested_at=stamps.get("harvested_at"),
		watering_suspended_at=stamps.get("watering_suspended_at"),
	)
	crop.current_stage_id = CropStageCalculator().calculate_stage_id(stage_timestamps(crop))
	return crop


@pytest.fixture
def recipe(fake_db_session: FakeAsyncSession) -> Recipe:
	"""germination 3d, blackout 2d, light 7d, suspend watering 24h before harvest."""
	item = make_recipe()
	fake_db_session.add(item)
	return item


@pytest.fixture
async def client(fake_db_session: FakeAsyncSession) -> AsyncGenerator[AsyncClient, None]:
	"""HTTPX async client with lifespan disabled and DB/registry dependencies mocked."""

	async def override_get_db() -> AsyncGenerator[Any, None]:
		yield fake_db_session

	async def override_stage_registry() -> StageRegistry:
		return StageRegistry.default()

	app.dependency_overrides[get_db] = override_get_db
	app.dependency_overrides[get_stage_registry] = override_stage_registry
	original_lifespan = app.router.lifespan_context

	@asynccontextmanager
	async def noop_lifespan(_: Any) -> AsyncGenerator[None, None]:
		yield

	app.router.lifespan_context = noop_lifespan

	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://test") as test_client:
		yield test_client

	app.router.lifespan_context = original_lifespan
	app.dependency_overrides.clear()
