"""Scoped (single space) and global assistant endpoints"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.schemas import (
    AnalysisResponse, AnalyzeRequest, AssistantReply, ConversationResponse, ConversationStarted,
    DuplicatesResponse, GlobalMessageRequest, MessageRequest, QuickWinsResponse,
    RecommendRequest, RecommendationsResponse, SuggestionsResponse, SummaryResponse,
    ThemesResponse,
)
from app.api.auth import Identity, get_current_member
from app.services.ai.context_assistant import ContextAssistantService
from app.services.ai.global_assistant import GlobalAssistantService

router = APIRouter(prefix="/assistant", tags=["Assistant"])


# ============ Scoped assistant ============

@router.post("/spaces/{space_id}/summary", response_model=SummaryResponse)
async def generate_summary(
    space_id: str,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = ContextAssistantService(db)
    return await service.generate_summary(space_id, identity.user_id, identity.organization_id)


@router.post("/spaces/{space_id}/duplicates", response_model=DuplicatesResponse)
async def detect_duplicates(
    space_id: str,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = ContextAssistantService(db)
    return await service.detect_duplicates(space_id, identity.user_id, identity.organization_id)


@router.post("/spaces/{space_id}/themes", response_model=ThemesResponse)
async def group_by_theme(
    space_id: str,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = ContextAssistantService(db)
    return await service.group_by_theme(space_id, identity.user_id, identity.organization_id)


@router.post("/spaces/{space_id}/quick-wins", response_model=QuickWinsResponse)
async def identify_quick_wins(
    space_id: str,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = ContextAssistantService(db)
    return await service.identify_quick_wins(space_id, identity.user_id, identity.organization_id)


@router.post("/spaces/{space_id}/suggestions", response_model=SuggestionsResponse)
async def suggest_features(
    space_id: str,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = ContextAssistantService(db)
    return await service.suggest_features(space_id, identity.user_id, identity.organization_id)


@router.post(
    "/spaces/{space_id}/conversations",
    response_model=ConversationStarted,
    status_code=status.HTTP_201_CREATED,
)
async def start_scoped_conversation(
    space_id: str,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = ContextAssistantService(db)
    return await service.start_conversation(space_id, identity.user_id, identity.organization_id)


@router.post("/conversations/{conversation_id}/messages", response_model=AssistantReply)
async def send_scoped_message(
    conversation_id: str,
    request: MessageRequest,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = ContextAssistantService(db)
    return await service.send_message(
        conversation_id, identity.user_id, identity.organization_id, request.message
    )


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    """Conversation with its messages in chronological order (either kind)"""
    service = ContextAssistantService(db)
    return await service.get_conversation(conversation_id, identity.organization_id)


# ============ Global assistant ============

@router.post("/global/recommend", response_model=RecommendationsResponse)
async def recommend_spaces(
    request: RecommendRequest,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = GlobalAssistantService(db)
    return await service.recommend_spaces(
        request.query, identity.user_id, identity.organization_id, request.limit
    )


@router.post("/global/analyze", response_model=AnalysisResponse)
async def analyze_across_spaces(
    request: AnalyzeRequest,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = GlobalAssistantService(db)
    return await service.analyze_across_spaces(
        request.space_ids, identity.user_id, identity.organization_id
    )


@router.post("/global/conversations", response_model=ConversationStarted, status_code=status.HTTP_201_CREATED)
async def start_global_conversation(
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    service = GlobalAssistantService(db)
    return await service.start_conversation(identity.user_id, identity.organization_id)


@router.post("/global/conversations/{conversation_id}/messages", response_model=AssistantReply)
async def send_global_message(
    conversation_id: str,
    request: GlobalMessageRequest,
    identity: Identity = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    """Manual mode when ``space_ids`` is given, automatic space selection otherwise"""
    service = GlobalAssistantService(db)
    return await service.send_message(
        conversation_id, identity.user_id, identity.organization_id,
        request.message, request.space_ids,
    )
