from app.db.models import (
    Base,
    # Tenancy
    Organization, OrganizationMember, MemberRole,
    # Product data
    ContextSpace, FeatureRequest, FeatureRequestSource,
    # Retrieval
    Embedding, EmbeddingSourceType,
    # Conversations
    AIConversation, AIMessage, ConversationType, MessageRole,
    # Usage and credentials
    AIUsageLog, AIProviderConfig, AIUserCredential, AIModelConfig,
    AICapability, CredentialSource,
)
from app.db.database import get_db, init_db, drop_db, async_session_maker, engine, is_postgres

__all__ = [
    "Base",
    # Tenancy
    "Organization",
    "OrganizationMember",
    "MemberRole",
    # Product data
    "ContextSpace",
    "FeatureRequest",
    "FeatureRequestSource",
    # Retrieval
    "Embedding",
    "EmbeddingSourceType",
    # Conversations
    "AIConversation",
    "AIMessage",
    "ConversationType",
    "MessageRole",
    # Usage and credentials
    "AIUsageLog",
    "AIProviderConfig",
    "AIUserCredential",
    "AIModelConfig",
    "AICapability",
    "CredentialSource",
    # Database
    "get_db",
    "init_db",
    "drop_db",
    "async_session_maker",
    "engine",
    "is_postgres",
]
