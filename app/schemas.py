"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, ValidationError

from app.db.models import FeatureRequestSource
from app.errors import ValidationFailure


# ============ Context Spaces ============

class ContextSpaceCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    type: Optional[str] = Field(None, max_length=50)
    parent_id: Optional[str] = None


class ContextSpaceUpdate(BaseModel):
    """Partial update. An explicit ``parent_id: null`` moves the space to the root."""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    type: Optional[str] = Field(None, max_length=50)
    parent_id: Optional[str] = None


class ContextSpaceResponse(BaseModel):
    id: str
    organization_id: str
    parent_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    type: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ContextSpaceTreeNode(ContextSpaceResponse):
    children: List["ContextSpaceTreeNode"] = Field(default_factory=list)


# ============ Feature Requests ============

class FeatureRequestCreate(BaseModel):
    title: str = Field(min_length=2, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    tags: Optional[List[str]] = None
    source: FeatureRequestSource = FeatureRequestSource.MANUAL


class FeatureRequestUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    tags: Optional[List[str]] = None


class FeatureRequestBulkCreate(BaseModel):
    requests: List[FeatureRequestCreate] = Field(min_length=1)


class FeatureRequestResponse(BaseModel):
    id: str
    context_space_id: str
    title: str
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    source: str
    created_by: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ============ Assistant ============

class FeatureRef(BaseModel):
    """Feature request data attached to AI analysis results"""
    id: str
    title: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class SummaryResponse(BaseModel):
    summary: str


class DuplicateGroup(BaseModel):
    reason: str
    similarity: float
    features: List[FeatureRef]


class DuplicatesResponse(BaseModel):
    groups: List[DuplicateGroup] = Field(default_factory=list)


class ThemeGroup(BaseModel):
    theme: str
    description: str
    features: List[FeatureRef]


class ThemesResponse(BaseModel):
    themes: List[ThemeGroup] = Field(default_factory=list)


class QuickWin(FeatureRef):
    reason: str
    estimatedEffort: Literal["low", "medium"]
    estimatedImpact: Literal["medium", "high"]


class QuickWinsResponse(BaseModel):
    quickWins: List[QuickWin] = Field(default_factory=list)


class SuggestionsResponse(BaseModel):
    suggestions: List[str] = Field(default_factory=list)


class SpaceRecommendation(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    similarity: float
    reason: str


class RecommendationsResponse(BaseModel):
    spaces: List[SpaceRecommendation] = Field(default_factory=list)


class AnalysisResponse(BaseModel):
    analysis: str


class ConversationStarted(BaseModel):
    conversation_id: str


class AssistantReply(BaseModel):
    response: str
    spaces_used: List[str] = Field(default_factory=list)


class AIMessageResponse(BaseModel):
    id: str
    role: str
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class ConversationResponse(BaseModel):
    id: str
    organization_id: str
    user_id: str
    context_space_id: Optional[str] = None
    type: str
    created_at: datetime
    messages: List[AIMessageResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


# ============ Assistant requests ============

class MessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=10000)


class GlobalMessageRequest(MessageRequest):
    space_ids: Optional[List[str]] = None  # Empty/None = automatic selection


class RecommendRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    limit: int = Field(5, ge=1, le=20)


class AnalyzeRequest(BaseModel):
    space_ids: List[str] = Field(min_length=1)


def parse_input(model: type, data) -> BaseModel:
    """Coerce a dict (or an existing model) into ``model``, raising ValidationFailure."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationFailure(f"Invalid {model.__name__}", errors=e.errors(include_url=False))
