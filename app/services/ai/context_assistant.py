"""
Context Assistant Service - AI features for a single context space.

Provides:
- Summary generation
- Duplicate feature detection
- Theme grouping
- Quick-win identification
- Feature suggestions
- Contextual chat

Analytical tasks ask the model for JSON and run it through the response
parser; unusable output yields an empty result, never an error.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.db.models import AICapability, ContextSpace, ConversationType, FeatureRequest
from app.errors import NotFound, StructuralError
from app.schemas import (
    AssistantReply, ConversationResponse, ConversationStarted, DuplicateGroup,
    DuplicatesResponse, FeatureRef, QuickWin, QuickWinsResponse, SuggestionsResponse,
    SummaryResponse, ThemeGroup, ThemesResponse,
)
from app.services.ai import conversations
from app.services.ai.factory import AIProviderFactory, get_provider_factory
from app.services.ai.parser import (
    DetectDuplicatesResponse, GroupByThemeResponse, IdentifyQuickWinsResponse,
    SuggestFeaturesResponse, parse_ai_response,
)
from app.services.ai.rag import RAGService
from app.services.ai.types import ChatMessage, ChatResponse
from app.services.ai.usage import AIUsageService, UsageRecord, get_usage_service

logger = logging.getLogger(__name__)


SUMMARY_PROMPT = """You are a product management assistant. Your task is to create a concise, informative summary of a product context space.

Focus on:
- Main purpose and goals
- Key features and their themes
- Current state and progress
- Important relationships to parent/child spaces

Be concise but comprehensive. Use bullet points where appropriate."""

DUPLICATES_PROMPT = """You are a product management assistant specialized in identifying duplicate or overlapping feature requests.

Analyze the feature requests and identify groups that are:
- Exact duplicates
- Similar intent with different wording
- Overlapping functionality that should be merged

Respond with a JSON array of duplicate groups. Each group should have:
- reason: Brief explanation of why they're duplicates
- similarity: Score from 0.0 to 1.0 (1.0 = exact duplicate)
- features: Array of feature IDs that belong to this group

Only include groups with 2+ features and similarity > 0.7.

Example response:
[
  {
    "reason": "Same feature request, different wording",
    "similarity": 0.95,
    "features": ["feat-1", "feat-2"]
  }
]"""

THEMES_PROMPT = """You are a product management assistant specialized in identifying themes and patterns in feature requests.

Analyze the feature requests and group them by common themes, problems, or user needs.

Respond with a JSON array of theme groups. Each group should have:
- theme: Short theme name (e.g., "User Authentication", "Performance")
- description: Brief explanation of the theme
- features: Array of feature IDs that belong to this theme

Example response:
[
  {
    "theme": "User Experience",
    "description": "Features focused on improving user interface and interactions",
    "features": ["feat-1", "feat-2", "feat-3"]
  }
]"""

QUICK_WINS_PROMPT = """You are a product management assistant specialized in identifying quick wins.

Quick wins are features that:
- Require low to medium effort to implement
- Provide medium to high impact for users
- Can be delivered quickly (days to weeks, not months)

Analyze the feature requests and identify the top quick wins.

Respond with a JSON array. Each quick win should have:
- id: Feature ID
- reason: Why this is a quick win
- estimatedEffort: "low" or "medium"
- estimatedImpact: "medium" or "high"

Only include features that are truly quick wins (limit to top 5-7).

Example response:
[
  {
    "id": "feat-1",
    "reason": "Simple UI change with high user satisfaction impact",
    "estimatedEffort": "low",
    "estimatedImpact": "high"
  }
]"""

SUGGESTIONS_PROMPT = """You are a product management assistant specialized in identifying feature opportunities.

Based on the context space information, suggest 3-5 new features that:
- Fill gaps in the current feature set
- Align with the space's purpose
- Follow common product patterns
- Address potential user needs

Respond with a JSON array of feature suggestions (strings). Each should be a brief, clear feature description.

Example response:
[
  "Add export functionality to allow users to download their data as CSV",
  "Implement user preferences to customize the dashboard layout",
  "Create automated reports that can be scheduled and emailed"
]"""

CHAT_PROMPT = """You are a helpful product management assistant for a specific context space.

Here is the current context:

{context}

Your role:
- Answer questions about this context space
- Help with product decisions
- Provide insights and recommendations
- Be concise but thorough

Always base your responses on the provided context."""


def format_feature_list(features: List[FeatureRequest]) -> str:
    lines = []
    for f in features:
        entry = f"[{f.id}] {f.title}"
        if f.description:
            entry += f"\n  Description: {f.description}"
        lines.append(entry)
    return "\n\n".join(lines)


class ContextAssistantService:
    def __init__(
        self,
        db: AsyncSession,
        factory: Optional[AIProviderFactory] = None,
        usage: Optional[AIUsageService] = None,
        rag: Optional[RAGService] = None,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.factory = factory or get_provider_factory()
        self.usage = usage or get_usage_service()
        self.config = config or get_settings()
        self.rag = rag or RAGService(db, factory=self.factory, usage=self.usage, config=self.config)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_space(self, context_space_id: str, organization_id: str) -> ContextSpace:
        space = await self.db.get(ContextSpace, context_space_id)
        if space is None or space.organization_id != organization_id:
            raise NotFound("Context space", context_space_id)
        return space

    async def _features(self, context_space_id: str) -> List[FeatureRequest]:
        result = await self.db.execute(
            select(FeatureRequest)
            .where(FeatureRequest.context_space_id == context_space_id)
            .order_by(FeatureRequest.created_at)
        )
        return list(result.scalars().all())

    async def _chat(
        self,
        user_id: str,
        organization_id: str,
        messages: List[ChatMessage],
        conversation_id: Optional[str] = None,
    ) -> ChatResponse:
        """Resolve provider, run the completion, record usage."""
        selection = await self.factory.get_provider(user_id, organization_id, db=self.db)
        response = await selection.provider.chat(messages)
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
        return response

    async def _ask(self, user_id: str, organization_id: str, system: str, user: str) -> str:
        response = await self._chat(user_id, organization_id, [
            ChatMessage(role="system", content=system),
            ChatMessage(role="user", content=user),
        ])
        return response.content

    @staticmethod
    def _hydrate(ids: List[str], by_id: Dict[str, FeatureRequest]) -> List[FeatureRef]:
        return [FeatureRef.model_validate(by_id[i]) for i in ids if i in by_id]

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def generate_summary(self, context_space_id: str, user_id: str, organization_id: str) -> SummaryResponse:
        await self._get_space(context_space_id, organization_id)
        context = await self.rag.get_context_for_space(context_space_id, user_id, organization_id)
        summary = await self._ask(
            user_id, organization_id, SUMMARY_PROMPT,
            f"Please summarize this context space:\n\n{context}",
        )
        return SummaryResponse(summary=summary)

    async def detect_duplicates(self, context_space_id: str, user_id: str, organization_id: str) -> DuplicatesResponse:
        await self._get_space(context_space_id, organization_id)
        features = await self._features(context_space_id)
        if len(features) < 2:
            return DuplicatesResponse()

        content = await self._ask(
            user_id, organization_id, DUPLICATES_PROMPT,
            f"Analyze these feature requests for duplicates:\n\n{format_feature_list(features)}",
        )
        raw_groups = parse_ai_response(content, DetectDuplicatesResponse, "duplicate detection")
        if not raw_groups:
            return DuplicatesResponse()

        by_id = {f.id: f for f in features}
        return DuplicatesResponse(groups=[
            DuplicateGroup(
                reason=g.reason,
                similarity=g.similarity,
                features=self._hydrate(g.features, by_id),
            )
            for g in raw_groups
        ])

    async def group_by_theme(self, context_space_id: str, user_id: str, organization_id: str) -> ThemesResponse:
        await self._get_space(context_space_id, organization_id)
        features = await self._features(context_space_id)
        if not features:
            return ThemesResponse()

        content = await self._ask(
            user_id, organization_id, THEMES_PROMPT,
            f"Group these feature requests by theme:\n\n{format_feature_list(features)}",
        )
        raw_themes = parse_ai_response(content, GroupByThemeResponse, "theme grouping")
        if not raw_themes:
            return ThemesResponse()

        by_id = {f.id: f for f in features}
        return ThemesResponse(themes=[
            ThemeGroup(
                theme=t.theme,
                description=t.description,
                features=self._hydrate(t.features, by_id),
            )
            for t in raw_themes
        ])

    async def identify_quick_wins(self, context_space_id: str, user_id: str, organization_id: str) -> QuickWinsResponse:
        await self._get_space(context_space_id, organization_id)
        features = await self._features(context_space_id)
        if not features:
            return QuickWinsResponse()

        content = await self._ask(
            user_id, organization_id, QUICK_WINS_PROMPT,
            f"Identify quick wins from these feature requests:\n\n{format_feature_list(features)}",
        )
        raw_wins = parse_ai_response(content, IdentifyQuickWinsResponse, "quick wins")
        if not raw_wins:
            return QuickWinsResponse()

        by_id = {f.id: f for f in features}
        quick_wins = []
        for qw in raw_wins:
            feature = by_id.get(qw.id)
            if feature is None:
                continue
            quick_wins.append(QuickWin(
                id=feature.id,
                title=feature.title,
                description=feature.description,
                reason=qw.reason,
                estimatedEffort=qw.estimatedEffort,
                estimatedImpact=qw.estimatedImpact,
            ))
        return QuickWinsResponse(quickWins=quick_wins)

    async def suggest_features(self, context_space_id: str, user_id: str, organization_id: str) -> SuggestionsResponse:
        await self._get_space(context_space_id, organization_id)
        context = await self.rag.get_context_for_space(context_space_id, user_id, organization_id)
        content = await self._ask(
            user_id, organization_id, SUGGESTIONS_PROMPT,
            f"Suggest new features for this context space:\n\n{context}",
        )
        suggestions = parse_ai_response(content, SuggestFeaturesResponse, "feature suggestions")
        return SuggestionsResponse(suggestions=suggestions or [])

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def start_conversation(self, context_space_id: str, user_id: str, organization_id: str) -> ConversationStarted:
        await self._get_space(context_space_id, organization_id)
        conversation = await conversations.create_conversation(
            self.db, user_id, organization_id, ConversationType.SCOPED.value, context_space_id
        )
        return ConversationStarted(conversation_id=conversation.id)

    async def send_message(
        self, conversation_id: str, user_id: str, organization_id: str, message: str
    ) -> AssistantReply:
        """One conversational turn, with the space's full context in the system prompt."""
        conversation = await conversations.load_conversation(self.db, conversation_id, organization_id)
        if conversation.type != ConversationType.SCOPED.value or not conversation.context_space_id:
            raise StructuralError("This conversation is not associated with a context space")

        history = await conversations.load_history(self.db, conversation_id)
        context = await self.rag.get_context_for_space(
            conversation.context_space_id, user_id, organization_id
        )
        chat_messages = [
            ChatMessage(role="system", content=CHAT_PROMPT.format(context=context)),
            *history,
            ChatMessage(role="user", content=message),
        ]
        response = await self._chat(user_id, organization_id, chat_messages, conversation_id)

        await conversations.append_exchange(self.db, conversation_id, message, response.content)
        return AssistantReply(response=response.content)

    async def get_conversation(self, conversation_id: str, organization_id: Optional[str] = None) -> ConversationResponse:
        conversation = await conversations.load_conversation(
            self.db, conversation_id, organization_id, with_messages=True
        )
        return ConversationResponse.model_validate(conversation)
