"""AI usage and model listing endpoints"""

from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.api.auth import Identity, get_current_identity, get_current_member
from app.services.ai.factory import get_provider_factory
from app.services.ai.rag import RAGService
from app.services.ai.usage import UsageSummary, get_usage_service

router = APIRouter(prefix="/ai", tags=["AI"])


@router.get("/usage/me", response_model=UsageSummary)
async def get_my_usage(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    return await get_usage_service().get_user_usage(db, identity.user_id, start, end)


@router.get("/usage/organization", response_model=UsageSummary)
async def get_organization_usage(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    return await get_usage_service().get_organization_usage(db, identity.organization_id, start, end)


@router.get("/models", response_model=List[str])
async def list_models(
    provider: Optional[str] = Query(None),
    identity: Identity = Depends(get_current_member),
):
    """Models offered by ``provider`` (default: the system default provider)"""
    return await get_provider_factory().list_available_models(provider)


@router.post("/reembed", response_model=dict)
async def reembed_organization(
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    """Regenerate every embedding in the organization"""
    rag = RAGService(db)
    return await rag.reembed_all(identity.organization_id, identity.user_id)
