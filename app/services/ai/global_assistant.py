"""
Global Assistant Service - AI features across many context spaces.

Provides:
- Space recommendations for a free-text query
- Cross-space strategic analysis
- Global chat with manual or automatic space selection

Every lookup is restricted to the caller's organization.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.db.database import async_session_maker
from app.db.models import (
    AICapability, ContextSpace, ConversationType, EmbeddingSourceType, FeatureRequest,
)
from app.errors import NotFound, StructuralError, ValidationFailure
from app.schemas import (
    AnalysisResponse, AssistantReply, ConversationResponse, ConversationStarted,
    RecommendationsResponse, SpaceRecommendation,
)
from app.services.ai import conversations
from app.services.ai.factory import AIProviderFactory, ProviderSelection, get_provider_factory
from app.services.ai.rag import RAGService
from app.services.ai.types import ChatMessage, ChatResponse
from app.services.ai.usage import AIUsageService, UsageRecord, get_usage_service

logger = logging.getLogger(__name__)

FALLBACK_REASON = "Relevant based on content similarity"

RATIONALE_PROMPT = (
    "You are a product management assistant. Explain in one brief sentence "
    "why this context space is relevant to the user's query."
)

ANALYSIS_PROMPT = """You are a product management assistant specialized in cross-space analysis.

Analyze multiple context spaces together and provide:
1. Common themes and patterns
2. Potential overlaps or conflicts
3. Strategic recommendations
4. Opportunities for synergy

Be concise but insightful."""

GLOBAL_CHAT_PROMPT = """You are a helpful product management assistant with access to multiple context spaces.

Your role:
- Answer questions about product strategy and decisions
- Provide insights across different areas
- Help with cross-cutting decisions
- Be concise but thorough"""

WITH_CONTEXT_NOTE = (
    "Use the provided context to inform your responses, "
    "but you can also use general product management knowledge."
)
NO_CONTEXT_NOTE = "No specific context provided. Use general product management knowledge."


class GlobalAssistantService:
    def __init__(
        self,
        db: AsyncSession,
        factory: Optional[AIProviderFactory] = None,
        usage: Optional[AIUsageService] = None,
        rag: Optional[RAGService] = None,
        config: Optional[Settings] = None,
        session_factory: Callable[[], AsyncSession] = async_session_maker,
    ):
        self.db = db
        self.factory = factory or get_provider_factory()
        self.usage = usage or get_usage_service()
        self.config = config or get_settings()
        self.rag = rag or RAGService(db, factory=self.factory, usage=self.usage, config=self.config)
        # One session per concurrent task
        self.session_factory = session_factory

    def _log_chat(
        self,
        selection: ProviderSelection,
        response: ChatResponse,
        user_id: str,
        organization_id: str,
        conversation_id: Optional[str] = None,
    ) -> None:
        self.usage.log_usage(UsageRecord(
            user_id=user_id,
            organization_id=organization_id,
            provider=selection.provider_name,
            model_id=response.model,
            capability=AICapability.CHAT.value,
            tokens_input=response.tokens_input,
            tokens_output=response.tokens_output,
            credential_source=selection.credential_source,
            conversation_id=conversation_id,
        ))

    async def _spaces_in_org(self, space_ids: List[str], organization_id: str) -> List[ContextSpace]:
        """Load the requested spaces that belong to the organization, in request order."""
        result = await self.db.execute(
            select(ContextSpace).where(
                ContextSpace.id.in_(space_ids),
                ContextSpace.organization_id == organization_id,
            )
        )
        by_id = {s.id: s for s in result.scalars().all()}
        ordered, seen = [], set()
        for space_id in space_ids:
            if space_id in by_id and space_id not in seen:
                ordered.append(by_id[space_id])
                seen.add(space_id)
        return ordered

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    async def recommend_spaces(
        self,
        query: str,
        user_id: str,
        organization_id: str,
        limit: Optional[int] = None,
    ) -> RecommendationsResponse:
        """
        Rank the organization's spaces by description similarity to ``query``.

        Only candidates above recommend_threshold are kept. Each gets a
        one-sentence rationale from the chat provider; if that call fails the
        candidate is kept with a generic reason.
        """
        if limit is None:
            limit = self.config.recommend_default_limit
        space_count = (await self.db.execute(
            select(func.count(ContextSpace.id)).where(ContextSpace.organization_id == organization_id)
        )).scalar_one()
        if not space_count:
            return RecommendationsResponse()

        query_vector = await self.rag.generate_embedding(user_id, organization_id, query)
        candidates = await self.rag.vectors.search_similar(
            query_vector,
            limit=space_count,
            organization_id=organization_id,
            source_type=EmbeddingSourceType.DESCRIPTION.value,
        )
        top = [c for c in candidates if c.similarity > self.config.recommend_threshold]
        top.sort(key=lambda c: c.similarity, reverse=True)
        top = top[:limit]
        if not top:
            return RecommendationsResponse()

        spaces = {s.id: s for s in await self._spaces_in_org([c.source_id for c in top], organization_id)}
        selection = await self.factory.get_provider(user_id, organization_id, db=self.db)

        recommendations = []
        for candidate in top:
            space = spaces.get(candidate.source_id)
            if space is None:
                continue
            reason = await self._rationale(selection, query, space, user_id, organization_id)
            recommendations.append(SpaceRecommendation(
                id=space.id,
                name=space.name,
                description=space.description,
                similarity=candidate.similarity,
                reason=reason,
            ))
        return RecommendationsResponse(spaces=recommendations)

    async def _rationale(
        self,
        selection: ProviderSelection,
        query: str,
        space: ContextSpace,
        user_id: str,
        organization_id: str,
    ) -> str:
        prompt = (
            f'Query: "{query}"\n\n'
            f"Context Space: {space.name}\n"
            f"Description: {space.description or 'No description'}\n\n"
            "Why is this space relevant? (One sentence)"
        )
        try:
            response = await selection.provider.chat([
                ChatMessage(role="system", content=RATIONALE_PROMPT),
                ChatMessage(role="user", content=prompt),
            ])
        except Exception as e:
            logger.warning(f"Rationale for space {space.id} failed, using generic reason: {e}")
            return FALLBACK_REASON

        self._log_chat(selection, response, user_id, organization_id)
        return response.content.strip() or FALLBACK_REASON

    # ------------------------------------------------------------------
    # Cross-space analysis
    # ------------------------------------------------------------------

    async def _mini_context(self, space: ContextSpace) -> str:
        async with self.session_factory() as session:
            features = (await session.execute(
                select(FeatureRequest.title)
                .where(FeatureRequest.context_space_id == space.id)
                .order_by(FeatureRequest.created_at)
            )).scalars().all()
        titles = "\n".join(f"- {t}" for t in features[: self.config.analysis_item_titles])
        return (
            f"## {space.name}\n"
            f"Description: {space.description or 'No description'}\n"
            f"Features ({len(features)} total):\n"
            f"{titles}"
        )

    async def analyze_across_spaces(
        self, space_ids: List[str], user_id: str, organization_id: str
    ) -> AnalysisResponse:
        if not space_ids:
            raise ValidationFailure("At least one space ID is required")

        spaces = await self._spaces_in_org(space_ids, organization_id)
        if not spaces:
            raise NotFound("Context spaces", ", ".join(space_ids))

        results = await asyncio.gather(
            *(self._mini_context(s) for s in spaces), return_exceptions=True
        )
        sections = []
        for space, result in zip(spaces, results):
            if isinstance(result, BaseException):
                logger.warning(f"Skipping space {space.id} in cross-space analysis: {result}")
                continue
            sections.append(result)

        prompt = (
            "Analyze these context spaces together:\n\n"
            + "\n\n".join(sections)
            + "\n\nProvide a strategic analysis across these spaces."
        )
        selection = await self.factory.get_provider(user_id, organization_id, db=self.db)
        response = await selection.provider.chat([
            ChatMessage(role="system", content=ANALYSIS_PROMPT),
            ChatMessage(role="user", content=prompt),
        ])
        self._log_chat(selection, response, user_id, organization_id)
        return AnalysisResponse(analysis=response.content)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def start_conversation(self, user_id: str, organization_id: str) -> ConversationStarted:
        conversation = await conversations.create_conversation(
            self.db, user_id, organization_id, ConversationType.GLOBAL.value
        )
        return ConversationStarted(conversation_id=conversation.id)

    async def _select_spaces(
        self,
        message: str,
        user_id: str,
        organization_id: str,
        selected_space_ids: Optional[List[str]],
    ) -> List[str]:
        if selected_space_ids:
            spaces = await self._spaces_in_org(selected_space_ids, organization_id)
            return [s.id for s in spaces]
        try:
            recommendations = await self.recommend_spaces(
                message, user_id, organization_id, limit=self.config.auto_select_limit
            )
        except Exception as e:
            logger.warning(f"Automatic space selection failed, answering without context: {e}")
            return []
        return [s.id for s in recommendations.spaces]

    async def _context_or_none(self, space_id: str, user_id: str, organization_id: str) -> Optional[str]:
        try:
            async with self.session_factory() as session:
                rag = RAGService(session, factory=self.factory, usage=self.usage, config=self.config)
                return await rag.get_context_for_space(space_id, user_id, organization_id)
        except Exception as e:
            logger.warning(f"No context for space {space_id}: {e}")
            return None

    async def send_message(
        self,
        conversation_id: str,
        user_id: str,
        organization_id: str,
        message: str,
        selected_space_ids: Optional[List[str]] = None,
    ) -> AssistantReply:
        """
        One global conversational turn.

        Manual mode uses ``selected_space_ids``; otherwise the top
        auto_select_limit recommendations are used. With no usable context
        the model is told to rely on general knowledge.
        """
        conversation = await conversations.load_conversation(self.db, conversation_id, organization_id)
        if conversation.type != ConversationType.GLOBAL.value or conversation.context_space_id:
            raise StructuralError("This conversation is not a global conversation")

        space_ids = await self._select_spaces(message, user_id, organization_id, selected_space_ids)

        context_text = ""
        if space_ids:
            contexts = await asyncio.gather(
                *(self._context_or_none(s, user_id, organization_id) for s in space_ids)
            )
            valid = [c for c in contexts if c is not None]
            if valid:
                context_text = "\n\nRelevant Context Spaces:\n\n" + "\n\n---\n\n".join(valid)

        system_prompt = GLOBAL_CHAT_PROMPT + context_text + "\n\n" + (
            WITH_CONTEXT_NOTE if context_text else NO_CONTEXT_NOTE
        )
        history = await conversations.load_history(self.db, conversation_id)
        chat_messages = [
            ChatMessage(role="system", content=system_prompt),
            *history,
            ChatMessage(role="user", content=message),
        ]

        selection = await self.factory.get_provider(user_id, organization_id, db=self.db)
        response = await selection.provider.chat(chat_messages)
        await conversations.append_exchange(self.db, conversation_id, message, response.content)
        self._log_chat(selection, response, user_id, organization_id, conversation_id)

        return AssistantReply(response=response.content, spaces_used=space_ids)

    async def get_conversation(self, conversation_id: str, organization_id: Optional[str] = None) -> ConversationResponse:
        conversation = await conversations.load_conversation(
            self.db, conversation_id, organization_id, with_messages=True
        )
        return ConversationResponse.model_validate(conversation)
