"""
Ollama provider - local inference over plain HTTP.

Routes:
  POST {base}/api/chat        chat completion (non-streaming)
  POST {base}/api/embeddings  single-prompt embedding
  GET  {base}/api/tags        installed models
"""

import logging
from typing import List, Optional

import httpx

from app.errors import ProviderUnavailable
from app.services.ai.types import (
    AIProvider, ChatMessage, ChatResponse, EmbeddingResponse, DEFAULT_TIMEOUT,
)

logger = logging.getLogger(__name__)


class OllamaProvider(AIProvider):
    name = "ollama"
    supports_chat = True
    supports_embeddings = True

    def __init__(
        self,
        base_url: str,
        chat_model: str,
        embed_model: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout)
        self.base_url = base_url.rstrip("/")
        self.chat_model = chat_model
        self.embed_model = embed_model
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            async with self._client() as client:
                r = await client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            raise ProviderUnavailable(self.name, f"{path} timed out")
        except httpx.HTTPError as e:
            raise ProviderUnavailable(self.name, f"cannot reach {self.base_url}: {e}")

        if r.status_code >= 400:
            raise ProviderUnavailable(
                self.name, f"{path} returned {r.status_code}: {r.text[:200]}"
            )
        try:
            data = r.json()
        except ValueError:
            raise ProviderUnavailable(self.name, f"{path} returned a non-JSON body")
        if not isinstance(data, dict):
            raise ProviderUnavailable(self.name, f"{path} returned {type(data).__name__}, expected an object")
        return data

    async def _chat(self, messages: List[ChatMessage], model: Optional[str]) -> ChatResponse:
        data = await self._request(
            "POST",
            "/api/chat",
            json={
                "model": model or self.chat_model,
                "messages": [m.to_dict() for m in messages],
                "stream": False,
            },
        )
        message = data.get("message") or {}
        return ChatResponse(
            content=message.get("content", ""),
            tokens_input=data.get("prompt_eval_count") or 0,
            tokens_output=data.get("eval_count") or 0,
            model=data.get("model") or model or self.chat_model,
        )

    async def _embed(self, text: str, model: Optional[str]) -> EmbeddingResponse:
        model_id = model or self.embed_model
        data = await self._request(
            "POST",
            "/api/embeddings",
            json={"model": model_id, "prompt": text},
        )
        embedding = data.get("embedding")
        if not embedding:
            raise ProviderUnavailable(self.name, "embeddings response had no vector")
        # Ollama doesn't report token usage for embeddings
        return EmbeddingResponse(embedding=embedding, tokens=0, model=model_id)

    async def _list_models(self) -> List[str]:
        data = await self._request("GET", "/api/tags")
        return [m["name"] for m in data.get("models", []) if "name" in m]
