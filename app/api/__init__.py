from app.api.auth import Identity, get_current_identity, get_current_member
from app.api.context_spaces import router as context_spaces_router
from app.api.feature_requests import router as feature_requests_router
from app.api.assistant import router as assistant_router
from app.api.usage import router as usage_router

__all__ = [
    "Identity",
    "get_current_identity",
    "get_current_member",
    "context_spaces_router",
    "feature_requests_router",
    "assistant_router",
    "usage_router",
]
