"""
Feature Request Service - CRUD for items inside a context space.

Bulk creation validates every request before writing any of them and
commits them in one transaction.
"""

import logging
from typing import List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import ContextSpace, EmbeddingSourceType, FeatureRequest
from app.errors import NotFound
from app.schemas import (
    FeatureRequestBulkCreate, FeatureRequestCreate, FeatureRequestUpdate, parse_input,
)
from app.services.ai.rag import RAGService
from app.services.permissions import can_edit_feature_request, can_view_context_space, require

logger = logging.getLogger(__name__)


class FeatureRequestService:
    def __init__(self, db: AsyncSession, rag: Optional[RAGService] = None):
        self.db = db
        self.rag = rag or RAGService(db)

    async def _space_for(self, context_space_id: str, user_id: str, action: str) -> ContextSpace:
        space = await self.db.get(ContextSpace, context_space_id)
        if space is None:
            raise NotFound("Context space", context_space_id)
        require(
            await can_view_context_space(self.db, user_id, space),
            f"You do not have permission to {action} feature requests in this space",
        )
        return space

    async def _load(self, feature_request_id: str) -> FeatureRequest:
        feature = await self.db.get(FeatureRequest, feature_request_id)
        if feature is None:
            raise NotFound("Feature request", feature_request_id)
        return feature

    async def get(self, feature_request_id: str, user_id: str) -> FeatureRequest:
        feature = await self._load(feature_request_id)
        await self._space_for(feature.context_space_id, user_id, "view")
        return feature

    async def list_for_space(self, context_space_id: str, user_id: str) -> List[FeatureRequest]:
        await self._space_for(context_space_id, user_id, "view")
        result = await self.db.execute(
            select(FeatureRequest)
            .where(FeatureRequest.context_space_id == context_space_id)
            .order_by(FeatureRequest.created_at)
        )
        return list(result.scalars().all())

    def _build(self, space: ContextSpace, user_id: str, data: FeatureRequestCreate) -> FeatureRequest:
        return FeatureRequest(
            context_space_id=space.id,
            title=data.title,
            description=data.description or None,
            tags=data.tags,
            source=data.source.value,
            created_by=user_id,
        )

    async def create(
        self,
        context_space_id: str,
        user_id: str,
        data: Union[FeatureRequestCreate, dict],
    ) -> FeatureRequest:
        data = parse_input(FeatureRequestCreate, data)
        space = await self._space_for(context_space_id, user_id, "create")

        feature = self._build(space, user_id, data)
        self.db.add(feature)
        await self.db.commit()
        await self.db.refresh(feature)

        await self._refresh_embedding(feature, user_id, space.organization_id)
        return feature

    async def bulk_create(
        self,
        context_space_id: str,
        user_id: str,
        requests: Union[FeatureRequestBulkCreate, Sequence[dict]],
    ) -> List[FeatureRequest]:
        """All-or-nothing: one invalid request rejects the whole batch."""
        if not isinstance(requests, FeatureRequestBulkCreate):
            requests = {"requests": list(requests)}
        batch = parse_input(FeatureRequestBulkCreate, requests)
        space = await self._space_for(context_space_id, user_id, "create")

        features = [self._build(space, user_id, item) for item in batch.requests]
        self.db.add_all(features)
        await self.db.commit()
        for feature in features:
            await self.db.refresh(feature)
        logger.info(f"Bulk created {len(features)} feature requests in space {space.id}")

        rolled_back = False
        for feature_id in [f.id for f in features]:
            rolled_back |= await self._embed_quietly(feature_id, user_id, space.organization_id)
        if rolled_back:
            for feature in features:
                await self.db.refresh(feature)
        return features

    async def update(
        self,
        feature_request_id: str,
        user_id: str,
        data: Union[FeatureRequestUpdate, dict],
    ) -> FeatureRequest:
        data = parse_input(FeatureRequestUpdate, data)
        feature = await self._load(feature_request_id)
        space = await self.db.get(ContextSpace, feature.context_space_id)
        require(
            await can_edit_feature_request(self.db, user_id, feature, space),
            "You do not have permission to edit this feature request",
        )

        fields = data.model_fields_set
        if "title" in fields and data.title is not None:
            feature.title = data.title
        if "description" in fields:
            feature.description = data.description or None
        if "tags" in fields:
            feature.tags = data.tags

        await self.db.commit()
        await self.db.refresh(feature)

        if fields & {"title", "description"}:
            await self._refresh_embedding(feature, user_id, space.organization_id)
        return feature

    async def delete(self, feature_request_id: str, user_id: str) -> None:
        feature = await self._load(feature_request_id)
        space = await self.db.get(ContextSpace, feature.context_space_id)
        require(
            await can_edit_feature_request(self.db, user_id, feature, space),
            "You do not have permission to delete this feature request",
        )
        await self.rag.vectors.delete_for_source(EmbeddingSourceType.ITEM.value, feature.id)
        await self.db.delete(feature)
        await self.db.commit()

    async def _refresh_embedding(self, feature: FeatureRequest, user_id: str, organization_id: str) -> None:
        if await self._embed_quietly(feature.id, user_id, organization_id):
            await self.db.refresh(feature)

    async def _embed_quietly(self, feature_request_id: str, user_id: str, organization_id: str) -> bool:
        """
        Best-effort embedding: a missing or failing provider never blocks the
        write. Returns True when a database error forced a rollback.
        """
        try:
            await self.rag.embed_feature_request(feature_request_id, user_id, organization_id)
        except SQLAlchemyError as e:
            logger.warning(f"Could not store embedding for feature request {feature_request_id}: {e}")
            await self.db.rollback()
            return True
        except Exception as e:
            logger.warning(f"Could not embed feature request {feature_request_id}: {e}")
        return False
