"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cropcycle.database import get_db
from cropcycle.services.stage_registry import StageRegistry, load_stage_registry


async def get_stage_registry(db: AsyncSession = Depends(get_db)) -> StageRegistry:
	return await load_stage_registry(db)
