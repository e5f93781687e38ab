"""
Provider contract shared by every AI vendor adapter.

Adapters implement ``_chat`` / ``_embed`` / ``_list_models``; the public
methods wrap them with a per-call timeout and translate timeouts into
ProviderUnavailable.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from app.errors import NotSupported, ProviderUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


@dataclass
class ChatMessage:
    """A role-tagged chat message ("system", "user" or "assistant")"""
    role: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatResponse:
    """Response from a chat completion"""
    content: str
    tokens_input: int
    tokens_output: int
    model: str


@dataclass
class EmbeddingResponse:
    """Response from an embedding call"""
    embedding: List[float] = field(default_factory=list)
    tokens: int = 0
    model: str = ""


class AIProvider(ABC):
    """
    Uniform interface for chat completion, text embedding and model listing.

    Capability flags are checked by the provider factory so callers never
    receive an embedding provider that cannot embed.
    """

    name: str = "base"
    supports_chat: bool = True
    supports_embeddings: bool = True

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    async def chat(self, messages: List[ChatMessage], model: Optional[str] = None) -> ChatResponse:
        if not self.supports_chat:
            raise NotSupported(self.name, "chat")
        return await self._bounded(self._chat(messages, model), "chat")

    async def embed(self, text: str, model: Optional[str] = None) -> EmbeddingResponse:
        if not self.supports_embeddings:
            raise NotSupported(self.name, "embeddings")
        return await self._bounded(self._embed(text, model), "embeddings")

    async def list_models(self) -> List[str]:
        return await self._bounded(self._list_models(), "list_models")

    async def _bounded(self, coro, operation: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} {operation} timed out after {self.timeout}s")
            raise ProviderUnavailable(self.name, f"{operation} timed out after {self.timeout}s")

    @abstractmethod
    async def _chat(self, messages: List[ChatMessage], model: Optional[str]) -> ChatResponse:
        ...

    async def _embed(self, text: str, model: Optional[str]) -> EmbeddingResponse:
        raise NotSupported(self.name, "embeddings")

    @abstractmethod
    async def _list_models(self) -> List[str]:
        ...
