"""
Database models for the Context Space AI core

This implements a hybrid storage system with:
- Tenant-scoped hierarchical context spaces and their feature requests
- Vector embeddings for semantic search (pgvector in production, JSON elsewhere)
- AI conversations, messages and an append-only usage ledger
- Three-tier provider credential storage (user, organization, system)
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum
import uuid

from sqlalchemy import (
    Column, String, Text, DateTime, Float, Integer, Boolean,
    ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.ext.declarative import declarative_base
from pgvector.sqlalchemy import Vector

from app.config import settings

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class MemberRole(str, Enum):
    """Roles inside an organization"""
    ADMIN = "admin"       # Full control, may delete anything
    MANAGER = "manager"   # May edit any space
    MEMBER = "member"     # May edit what they created


class FeatureRequestSource(str, Enum):
    MANUAL = "manual"
    IMPORTED = "imported"


class EmbeddingSourceType(str, Enum):
    """Origin of an embedded piece of text"""
    DESCRIPTION = "description"             # A context space description
    ITEM = "item"                           # A feature request (title + description)
    INTEGRATION_DATA = "integration_data"   # Content synced from an integration


class ConversationType(str, Enum):
    SCOPED = "scoped"   # Bound to a single context space
    GLOBAL = "global"   # Spans the whole organization


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class AICapability(str, Enum):
    CHAT = "chat"
    EMBEDDINGS = "embeddings"


class CredentialSource(str, Enum):
    """Which tier supplied the credentials for a provider call"""
    USER = "user"
    ORGANIZATION = "organization"
    SYSTEM = "system"


class Organization(Base):
    """Tenant"""
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    members: Mapped[List["OrganizationMember"]] = relationship("OrganizationMember", back_populates="organization")


class OrganizationMember(Base):
    """Membership of an externally-authenticated user in an organization"""
    __tablename__ = "organization_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)  # Owned by the identity provider
    role: Mapped[str] = mapped_column(String(20), default=MemberRole.MEMBER.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    organization: Mapped["Organization"] = relationship("Organization", back_populates="members")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
    )


class ContextSpace(Base):
    """
    A node in a tenant-scoped tree of product contexts.

    The parent chain must be acyclic and stay inside one organization.
    Deletion is blocked while children exist.
    """
    __tablename__ = "context_spaces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), index=True)
    parent_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("context_spaces.id"), nullable=True, index=True)

    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # Free-form category tag

    created_by: Mapped[str] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class FeatureRequest(Base):
    """A unit of product work, belonging to exactly one context space"""
    __tablename__ = "feature_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    context_space_id: Mapped[str] = mapped_column(String(36), ForeignKey("context_spaces.id", ondelete="CASCADE"), index=True)

    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    source: Mapped[str] = mapped_column(String(20), default=FeatureRequestSource.MANUAL.value)

    created_by: Mapped[str] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Embedding(Base):
    """
    Vector representation of a piece of source content.

    At most one row per (context_space_id, source_type, source_id);
    re-embedding overwrites in place.
    """
    __tablename__ = "embeddings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    context_space_id: Mapped[str] = mapped_column(String(36), ForeignKey("context_spaces.id", ondelete="CASCADE"), index=True)
    source_type: Mapped[str] = mapped_column(String(30))
    source_id: Mapped[str] = mapped_column(String(36))
    content: Mapped[str] = mapped_column(Text)

    # Portable copy, used for cosine similarity outside PostgreSQL
    embedding_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # pgvector column (PostgreSQL only)
    embedding = Column(Vector(settings.embedding_dimension), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("context_space_id", "source_type", "source_id", name="uq_embedding_source"),
        Index("ix_embeddings_source", "source_type", "source_id"),
    )


class AIConversation(Base):
    """Chat session, scoped to one context space or global"""
    __tablename__ = "ai_conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    context_space_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("context_spaces.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(20), default=ConversationType.SCOPED.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    messages: Mapped[List["AIMessage"]] = relationship(
        "AIMessage", back_populates="conversation", order_by="AIMessage.created_at"
    )


class AIMessage(Base):
    """Append-only message in a conversation"""
    __tablename__ = "ai_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    conversation_id: Mapped[str] = mapped_column(String(36), ForeignKey("ai_conversations.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String(20))  # "system", "user", "assistant"
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    conversation: Mapped["AIConversation"] = relationship("AIConversation", back_populates="messages")


class AIUsageLog(Base):
    """One row per provider call. Never mutated."""
    __tablename__ = "ai_usage_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36))
    organization_id: Mapped[str] = mapped_column(String(36))
    provider: Mapped[str] = mapped_column(String(50))
    model_id: Mapped[str] = mapped_column(String(100))
    capability: Mapped[str] = mapped_column(String(20))  # "chat" or "embeddings"
    tokens_input: Mapped[int] = mapped_column(Integer, default=0)
    tokens_output: Mapped[int] = mapped_column(Integer, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)  # USD
    credential_source: Mapped[str] = mapped_column(String(20), default=CredentialSource.SYSTEM.value)
    conversation_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_ai_usage_user_created", "user_id", "created_at"),
        Index("ix_ai_usage_org_created", "organization_id", "created_at"),
    )


class AIProviderConfig(Base):
    """
    Organization-level (organization_id set) or system-level provider
    configuration.
    """
    __tablename__ = "ai_provider_config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True
    )
    provider: Mapped[str] = mapped_column(String(50))
    api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    base_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    default_chat_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    default_embed_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AIUserCredential(Base):
    """A user's own API key for a provider"""
    __tablename__ = "ai_user_credential"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    provider: Mapped[str] = mapped_column(String(50))
    api_key: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_user_provider_credential"),
    )


class AIModelConfig(Base):
    """Known models with capabilities and per-1K-token pricing"""
    __tablename__ = "ai_model_config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    provider: Mapped[str] = mapped_column(String(50))
    model_id: Mapped[str] = mapped_column(String(100))
    capabilities: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)  # ["chat", "embeddings"]
    cost_per_1k_input: Mapped[float] = mapped_column(Float, default=0.0)
    cost_per_1k_output: Mapped[float] = mapped_column(Float, default=0.0)
    context_window: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("provider", "model_id", name="uq_model_config"),
    )
