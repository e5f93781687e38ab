"""
OpenAI provider - hosted chat + embeddings through the official SDK.
"""

import logging
from typing import List, Optional

from openai import AsyncOpenAI, APIError

from app.errors import ProviderUnavailable
from app.services.ai.types import (
    AIProvider, ChatMessage, ChatResponse, EmbeddingResponse, DEFAULT_TIMEOUT,
)

logger = logging.getLogger(__name__)


class OpenAIProvider(AIProvider):
    name = "openai"
    supports_chat = True
    supports_embeddings = True

    def __init__(
        self,
        api_key: str,
        chat_model: str,
        embed_model: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(timeout=timeout)
        self.chat_model = chat_model
        self.embed_model = embed_model
        # max_retries=0: failures surface to the caller, nothing retries here
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def _chat(self, messages: List[ChatMessage], model: Optional[str]) -> ChatResponse:
        model_id = model or self.chat_model
        try:
            response = await self.client.chat.completions.create(
                model=model_id,
                messages=[m.to_dict() for m in messages],
            )
        except APIError as e:
            raise ProviderUnavailable(self.name, f"chat failed: {e}")

        usage = response.usage
        return ChatResponse(
            content=response.choices[0].message.content or "",
            tokens_input=usage.prompt_tokens if usage else 0,
            tokens_output=usage.completion_tokens if usage else 0,
            model=response.model or model_id,
        )

    async def _embed(self, text: str, model: Optional[str]) -> EmbeddingResponse:
        model_id = model or self.embed_model
        try:
            response = await self.client.embeddings.create(model=model_id, input=text)
        except APIError as e:
            raise ProviderUnavailable(self.name, f"embeddings failed: {e}")

        return EmbeddingResponse(
            embedding=list(response.data[0].embedding),
            tokens=response.usage.prompt_tokens if response.usage else 0,
            model=response.model or model_id,
        )

    async def _list_models(self) -> List[str]:
        try:
            page = await self.client.models.list()
            return [m.id for m in page.data]
        except APIError as e:
            logger.warning(f"OpenAI model listing failed, returning configured models: {e}")
            return [self.chat_model, self.embed_model]
