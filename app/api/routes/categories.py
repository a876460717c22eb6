from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from app.dependencies.auth import CurrentUser
from app.dependencies.tickets import get_category_registry
from app.tickets.protocols import CategoryRegistry

router = APIRouter(prefix="/categories", tags=["categories"])


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    parent_id: str | None


@router.get("", response_model=list[CategoryResponse])
async def list_categories(
    registry: Annotated[CategoryRegistry, Depends(get_category_registry)],
    _: CurrentUser,
) -> list[CategoryResponse]:
    categories = await registry.list_categories()
    return [CategoryResponse.model_validate(category) for category in categories]
