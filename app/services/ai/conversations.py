"""Conversation persistence shared by the scoped and global assistants."""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.db.models import AIConversation, AIMessage, MessageRole
from app.errors import NotFound
from app.services.ai.types import ChatMessage


async def create_conversation(
    db: AsyncSession,
    user_id: str,
    organization_id: str,
    conversation_type: str,
    context_space_id: Optional[str] = None,
) -> AIConversation:
    conversation = AIConversation(
        organization_id=organization_id,
        user_id=user_id,
        context_space_id=context_space_id,
        type=conversation_type,
    )
    db.add(conversation)
    await db.commit()
    await db.refresh(conversation)
    return conversation


async def load_conversation(
    db: AsyncSession,
    conversation_id: str,
    organization_id: Optional[str] = None,
    with_messages: bool = False,
) -> AIConversation:
    """Fetch a conversation, treating one from another organization as missing."""
    query = select(AIConversation).where(AIConversation.id == conversation_id)
    if with_messages:
        query = query.options(selectinload(AIConversation.messages)).execution_options(
            populate_existing=True
        )
    conversation = (await db.execute(query)).scalar_one_or_none()
    if conversation is None or (
        organization_id is not None and conversation.organization_id != organization_id
    ):
        raise NotFound("Conversation", conversation_id)
    return conversation


async def load_history(db: AsyncSession, conversation_id: str) -> List[ChatMessage]:
    result = await db.execute(
        select(AIMessage)
        .where(AIMessage.conversation_id == conversation_id)
        .order_by(AIMessage.created_at, AIMessage.id)
    )
    return [ChatMessage(role=m.role, content=m.content) for m in result.scalars().all()]


async def append_exchange(
    db: AsyncSession, conversation_id: str, user_message: str, assistant_message: str
) -> None:
    """Persist a user turn and its reply with strictly increasing timestamps."""
    user_at = datetime.utcnow()
    db.add(AIMessage(
        conversation_id=conversation_id,
        role=MessageRole.USER.value,
        content=user_message,
        created_at=user_at,
    ))
    db.add(AIMessage(
        conversation_id=conversation_id,
        role=MessageRole.ASSISTANT.value,
        content=assistant_message,
        created_at=max(datetime.utcnow(), user_at + timedelta(microseconds=1)),
    ))
    await db.commit()
