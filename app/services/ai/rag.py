"""
RAG Service - embedding generation and context assembly for context spaces.

The assembled context is plain text with markdown-style section headers:

    # Context Space: <name>
    Description / Type
    ## Parent Spaces        nearest parent first
    ## Child Spaces         direct children only
    ## Feature Requests     capped at rag_item_limit
    ## Related Contexts     similar content from other spaces (best-effort)

Empty sections are omitted.
"""

import asyncio
import logging
from functools import lru_cache
from typing import Dict, List, Optional

import tiktoken
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.db.models import (
    AICapability, ContextSpace, Embedding, EmbeddingSourceType, FeatureRequest,
)
from app.errors import NotFound, ProviderUnavailable
from app.services.ai.factory import AIProviderFactory, get_provider_factory
from app.services.ai.usage import AIUsageService, UsageRecord, get_usage_service
from app.services.ai.vector_store import SimilarResult, VectorStore

logger = logging.getLogger(__name__)


def _bullet(name: str, description: Optional[str]) -> str:
    return f"- {name}: {description}" if description else f"- {name}"


def feature_embedding_text(feature: FeatureRequest) -> str:
    if feature.description:
        return f"{feature.title}\n{feature.description}"
    return feature.title


@lru_cache()
def _encoding():
    return tiktoken.get_encoding("cl100k_base")


def estimate_tokens(text: str) -> int:
    """Count tokens in a text string (cl100k_base)."""
    return len(_encoding().encode(text))


class RAGService:
    """Embeds product content and assembles prompt context from it."""

    def __init__(
        self,
        db: AsyncSession,
        factory: Optional[AIProviderFactory] = None,
        usage: Optional[AIUsageService] = None,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.factory = factory or get_provider_factory()
        self.usage = usage or get_usage_service()
        self.config = config or get_settings()
        self.vectors = VectorStore(db)

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def generate_embedding(self, user_id: str, organization_id: str, text: str) -> List[float]:
        """Embed text with an embedding-capable provider and record the usage."""
        selection = await self.factory.get_embedding_provider(user_id, organization_id, db=self.db)
        response = await selection.provider.embed(text)

        self.usage.log_usage(UsageRecord(
            user_id=user_id,
            organization_id=organization_id,
            provider=selection.provider_name,
            model_id=response.model,
            capability=AICapability.EMBEDDINGS.value,
            tokens_input=response.tokens,
            tokens_output=0,
            credential_source=selection.credential_source,
        ))
        return response.embedding

    async def store_embedding(
        self,
        context_space_id: str,
        source_type: str,
        source_id: str,
        content: str,
        vector: List[float],
    ) -> Embedding:
        return await self.vectors.store(context_space_id, source_type, source_id, content, vector)

    async def search_similar(
        self,
        query_vector: List[float],
        context_space_id: Optional[str] = None,
        limit: int = 10,
        organization_id: Optional[str] = None,
    ) -> List[SimilarResult]:
        return await self.vectors.search_similar(
            query_vector,
            context_space_id=context_space_id,
            limit=limit,
            organization_id=organization_id,
        )

    async def embed_context_space(
        self, context_space_id: str, user_id: str, organization_id: str
    ) -> Optional[Embedding]:
        """(Re)embed a space description. A cleared description drops the old vector."""
        space = await self._get_space(context_space_id)
        if not space.description:
            removed = await self.vectors.delete_for_source(EmbeddingSourceType.DESCRIPTION.value, space.id)
            if removed:
                await self.db.commit()
            return None

        vector = await self.generate_embedding(user_id, organization_id, space.description)
        return await self.store_embedding(
            space.id, EmbeddingSourceType.DESCRIPTION.value, space.id, space.description, vector
        )

    async def embed_feature_request(
        self, feature_request_id: str, user_id: str, organization_id: str
    ) -> Embedding:
        feature = await self.db.get(FeatureRequest, feature_request_id)
        if feature is None:
            raise NotFound("Feature request", feature_request_id)

        text = feature_embedding_text(feature)
        vector = await self.generate_embedding(user_id, organization_id, text)
        return await self.store_embedding(
            feature.context_space_id, EmbeddingSourceType.ITEM.value, feature.id, text, vector
        )

    async def reembed_all(self, organization_id: str, user_id: str) -> Dict[str, int]:
        """Re-embed every described space and every feature request in an organization."""
        spaces = (await self.db.execute(
            select(ContextSpace).where(ContextSpace.organization_id == organization_id)
        )).scalars().all()

        spaces_embedded = 0
        for space in spaces:
            if space.description:
                await self.embed_context_space(space.id, user_id, organization_id)
                spaces_embedded += 1

        features = (await self.db.execute(
            select(FeatureRequest).where(
                FeatureRequest.context_space_id.in_(
                    select(ContextSpace.id).where(ContextSpace.organization_id == organization_id)
                )
            )
        )).scalars().all()

        features_embedded = 0
        for feature in features:
            await self.embed_feature_request(feature.id, user_id, organization_id)
            features_embedded += 1

        logger.info(
            f"Re-embedded org {organization_id}: {spaces_embedded} spaces, {features_embedded} features"
        )
        return {"spaces": spaces_embedded, "features": features_embedded}

    # ------------------------------------------------------------------
    # Context assembly
    # ------------------------------------------------------------------

    async def _get_space(self, context_space_id: str) -> ContextSpace:
        space = await self.db.get(ContextSpace, context_space_id)
        if space is None:
            raise NotFound("Context space", context_space_id)
        return space

    async def get_parent_chain(self, parent_id: Optional[str]) -> List[ContextSpace]:
        """
        Walk parent links upward, nearest parent first.

        Stops on a repeated id or after rag_max_ancestor_depth steps, so a
        corrupted (cyclic) tree cannot loop forever.
        """
        chain: List[ContextSpace] = []
        visited = set()
        current_id = parent_id
        while current_id is not None:
            if current_id in visited:
                logger.warning(f"Cycle detected in context space tree at {current_id}")
                break
            if len(chain) >= self.config.rag_max_ancestor_depth:
                logger.warning(f"Parent chain truncated at depth {len(chain)}")
                break
            visited.add(current_id)

            parent = await self.db.get(ContextSpace, current_id)
            if parent is None:
                break
            chain.append(parent)
            current_id = parent.parent_id
        return chain

    async def get_context_for_space(
        self, context_space_id: str, user_id: str, organization_id: str
    ) -> str:
        """Assemble the text context for one space, bounded by ai_context_timeout."""
        try:
            context = await asyncio.wait_for(
                self._build_context(context_space_id, user_id, organization_id),
                timeout=self.config.ai_context_timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderUnavailable(
                "context", f"assembling context for {context_space_id} exceeded "
                f"{self.config.ai_context_timeout}s"
            )

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Context for space {context_space_id}: ~{estimate_tokens(context)} tokens")
        return context

    async def _build_context(self, context_space_id: str, user_id: str, organization_id: str) -> str:
        space = await self._get_space(context_space_id)
        parts: List[str] = []

        # 1. Space details
        parts.append(f"# Context Space: {space.name}")
        if space.description:
            parts.append(f"\nDescription: {space.description}")
        if space.type:
            parts.append(f"Type: {space.type}")

        # 2. Parent chain
        if space.parent_id:
            parents = [p for p in await self.get_parent_chain(space.parent_id) if p.id != space.id]
            if parents:
                parts.append("\n## Parent Spaces:")
                parts.extend(_bullet(p.name, p.description) for p in parents)

        # 3. Direct children
        children = (await self.db.execute(
            select(ContextSpace)
            .where(ContextSpace.parent_id == space.id)
            .order_by(ContextSpace.created_at)
        )).scalars().all()
        if children:
            parts.append("\n## Child Spaces:")
            parts.extend(_bullet(c.name, c.description) for c in children)

        # 4. Feature requests (capped)
        total_features = (await self.db.execute(
            select(func.count(FeatureRequest.id)).where(FeatureRequest.context_space_id == space.id)
        )).scalar_one()
        if total_features:
            features = (await self.db.execute(
                select(FeatureRequest)
                .where(FeatureRequest.context_space_id == space.id)
                .order_by(FeatureRequest.created_at)
                .limit(self.config.rag_item_limit)
            )).scalars().all()
            parts.append(f"\n## Feature Requests ({total_features} total):")
            parts.extend(_bullet(f.title, f.description) for f in features)

        # 5. Related contexts, never fatal
        if space.description:
            related = await self._related_contexts(space, user_id, organization_id)
            if related:
                parts.append("\n## Related Contexts:")
                parts.extend(f"- {r.content} (similarity: {r.similarity:.2f})" for r in related)

        return "\n".join(parts)

    async def _related_contexts(
        self, space: ContextSpace, user_id: str, organization_id: str
    ) -> List[SimilarResult]:
        try:
            vector = await self.generate_embedding(user_id, organization_id, space.description)
            candidates = await self.vectors.search_similar(
                vector,
                organization_id=space.organization_id,
                exclude_context_space_id=space.id,
                limit=self.config.rag_related_limit,
            )
        except Exception as e:
            logger.warning(f"Skipping related contexts for space {space.id}: {e}")
            return []

        return [c for c in candidates if c.similarity > self.config.rag_related_threshold]
