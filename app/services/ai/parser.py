"""
Parsing of model-generated JSON into typed records.

Model output is untrusted: it may be wrapped in markdown fences, be
invalid JSON, or have the wrong shape. Every failure is logged with the
task label and an excerpt of the raw text, and the caller gets ``None``
instead of an exception.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from app.errors import ValidationFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_EXCERPT_CHARS = 300


# ── Response Schemas ────────────────────────────────────────────────

class DuplicateGroupRaw(BaseModel):
    """A group of feature requests the model considers duplicates."""
    reason: str
    similarity: float = Field(ge=0.0, le=1.0)
    features: List[str]


class ThemeGroupRaw(BaseModel):
    theme: str
    description: str
    features: List[str]


class QuickWinRaw(BaseModel):
    id: str
    reason: str
    estimatedEffort: Literal["low", "medium"]
    estimatedImpact: Literal["medium", "high"]


DetectDuplicatesResponse = List[DuplicateGroupRaw]
GroupByThemeResponse = List[ThemeGroupRaw]
IdentifyQuickWinsResponse = List[QuickWinRaw]
SuggestFeaturesResponse = List[str]


# ── Parsing ─────────────────────────────────────────────────────────

@dataclass
class ParseResult(Generic[T]):
    """Typed value, or ``ok=False`` when the output could not be used."""
    value: Optional[T] = None
    ok: bool = False
    error: Optional[str] = None


def strip_code_fences(content: str) -> str:
    match = _FENCE_RE.match(content)
    return match.group(1) if match else content.strip()


def _decode(content: str, schema: Any) -> Any:
    try:
        data = json.loads(strip_code_fences(content))
    except (TypeError, ValueError) as e:
        raise ValidationFailure(f"response is not valid JSON: {e}")
    try:
        return TypeAdapter(schema).validate_python(data)
    except ValidationError as e:
        raise ValidationFailure("response does not match the expected shape", errors=e.errors())


def parse_result(content: str, schema: Any, error_context: str) -> ParseResult:
    try:
        return ParseResult(value=_decode(content, schema), ok=True)
    except ValidationFailure as e:
        excerpt = (content or "")[:_EXCERPT_CHARS]
        logger.error(f"Failed to parse {error_context}: {e.message} {e.errors or ''} | raw: {excerpt!r}")
        return ParseResult(error=e.message)


def parse_ai_response(content: str, schema: Any, error_context: str) -> Optional[Any]:
    """
    Parse ``content`` as JSON and validate it against ``schema``.

    Returns the validated value, or None when either step fails.
    """
    return parse_result(content, schema, error_context).value
