"""Context space CRUD endpoints"""

from typing import List, Optional
from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.schemas import (
    ContextSpaceCreate, ContextSpaceUpdate, ContextSpaceResponse, ContextSpaceTreeNode,
)
from app.api.auth import Identity, get_current_identity
from app.services.context_space_service import ContextSpaceService

router = APIRouter(prefix="/context-spaces", tags=["Context Spaces"])


@router.post("", response_model=ContextSpaceResponse, status_code=status.HTTP_201_CREATED)
async def create_context_space(
    data: ContextSpaceCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = ContextSpaceService(db)
    return await service.create(identity.user_id, identity.organization_id, data)


@router.get("", response_model=List[ContextSpaceResponse])
async def list_context_spaces(
    parent_id: Optional[str] = Query(None),
    include_children: bool = Query(False),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    """Root spaces, the children of ``parent_id``, or every space with ``include_children``"""
    service = ContextSpaceService(db)
    return await service.list(
        identity.user_id, identity.organization_id,
        parent_id=parent_id, include_children=include_children,
    )


@router.get("/tree", response_model=List[ContextSpaceTreeNode])
async def get_context_space_tree(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = ContextSpaceService(db)
    return await service.get_tree(identity.user_id, identity.organization_id)


@router.get("/{space_id}", response_model=ContextSpaceResponse)
async def get_context_space(
    space_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = ContextSpaceService(db)
    return await service.get(space_id, identity.user_id)


@router.get("/{space_id}/ancestors", response_model=List[ContextSpaceResponse])
async def get_context_space_ancestors(
    space_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    """Breadcrumb, root first"""
    service = ContextSpaceService(db)
    return await service.get_ancestors(space_id, identity.user_id)


@router.patch("/{space_id}", response_model=ContextSpaceResponse)
async def update_context_space(
    space_id: str,
    data: ContextSpaceUpdate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = ContextSpaceService(db)
    return await service.update(space_id, identity.user_id, data)


@router.delete("/{space_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_context_space(
    space_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = ContextSpaceService(db)
    await service.delete(space_id, identity.user_id)
