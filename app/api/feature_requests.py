"""Feature request endpoints"""

from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.schemas import (
    FeatureRequestCreate, FeatureRequestUpdate, FeatureRequestBulkCreate, FeatureRequestResponse,
)
from app.api.auth import Identity, get_current_identity
from app.services.feature_request_service import FeatureRequestService

router = APIRouter(tags=["Feature Requests"])


@router.post(
    "/context-spaces/{space_id}/feature-requests",
    response_model=FeatureRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_feature_request(
    space_id: str,
    data: FeatureRequestCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = FeatureRequestService(db)
    return await service.create(space_id, identity.user_id, data)


@router.post(
    "/context-spaces/{space_id}/feature-requests/bulk",
    response_model=List[FeatureRequestResponse],
    status_code=status.HTTP_201_CREATED,
)
async def bulk_create_feature_requests(
    space_id: str,
    data: FeatureRequestBulkCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    """All requests are created, or none are"""
    service = FeatureRequestService(db)
    return await service.bulk_create(space_id, identity.user_id, data)


@router.get("/context-spaces/{space_id}/feature-requests", response_model=List[FeatureRequestResponse])
async def list_feature_requests(
    space_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = FeatureRequestService(db)
    return await service.list_for_space(space_id, identity.user_id)


@router.get("/feature-requests/{feature_id}", response_model=FeatureRequestResponse)
async def get_feature_request(
    feature_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = FeatureRequestService(db)
    return await service.get(feature_id, identity.user_id)


@router.patch("/feature-requests/{feature_id}", response_model=FeatureRequestResponse)
async def update_feature_request(
    feature_id: str,
    data: FeatureRequestUpdate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = FeatureRequestService(db)
    return await service.update(feature_id, identity.user_id, data)


@router.delete("/feature-requests/{feature_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_feature_request(
    feature_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    service = FeatureRequestService(db)
    await service.delete(feature_id, identity.user_id)
