from app.services.ai.types import AIProvider, ChatMessage, ChatResponse, EmbeddingResponse
from app.services.ai.factory import AIProviderFactory, ProviderSelection, get_provider_factory
from app.services.ai.usage import AIUsageService, UsageRecord, UsageSummary, get_usage_service
from app.services.ai.vector_store import SimilarResult, VectorStore
from app.services.ai.rag import RAGService
from app.services.ai.parser import ParseResult, parse_ai_response
from app.services.ai.context_assistant import ContextAssistantService
from app.services.ai.global_assistant import GlobalAssistantService

__all__ = [
    "AIProvider",
    "ChatMessage",
    "ChatResponse",
    "EmbeddingResponse",
    "AIProviderFactory",
    "ProviderSelection",
    "get_provider_factory",
    "AIUsageService",
    "UsageRecord",
    "UsageSummary",
    "get_usage_service",
    "SimilarResult",
    "VectorStore",
    "RAGService",
    "ParseResult",
    "parse_ai_response",
    "ContextAssistantService",
    "GlobalAssistantService",
]
