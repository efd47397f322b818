"""Growth stage lookup route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from cropcycle.dependencies import get_stage_registry
from cropcycle.schemas.crops import StageRead
from cropcycle.services.stage_registry import StageRegistry

router = APIRouter(prefix="/stages", tags=["stages"])


@router.get("", response_model=list[StageRead])
async def list_stages(registry: StageRegistry = Depends(get_stage_registry)) -> list[StageRead]:
	return [StageRead.model_validate(stage) for stage in registry.ordered]
