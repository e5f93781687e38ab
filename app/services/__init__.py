from app.services.context_space_service import ContextSpaceService
from app.services.feature_request_service import FeatureRequestService

__all__ = [
    "ContextSpaceService",
    "FeatureRequestService",
]
