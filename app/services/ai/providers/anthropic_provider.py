"""
Anthropic provider - hosted chat only.

Anthropic takes the system prompt as a separate parameter, so system
messages are pulled out of the history before the call. There is no
embeddings endpoint and no models endpoint.
"""

import logging
from typing import List, Optional

from anthropic import AsyncAnthropic, APIError

from app.errors import ProviderUnavailable
from app.services.ai.types import AIProvider, ChatMessage, ChatResponse, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

KNOWN_MODELS = [
    "claude-3-5-sonnet-20241022",
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
]


class AnthropicProvider(AIProvider):
    name = "anthropic"
    supports_chat = True
    supports_embeddings = False

    def __init__(
        self,
        api_key: str,
        chat_model: str,
        max_tokens: int = 4096,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[AsyncAnthropic] = None,
    ):
        super().__init__(timeout=timeout)
        self.chat_model = chat_model
        self.max_tokens = max_tokens
        self.client = client or AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

    @staticmethod
    def split_system(messages: List[ChatMessage]) -> tuple[Optional[str], List[dict]]:
        """Separate system prompt(s) from the user/assistant turns."""
        system_parts = [m.content for m in messages if m.role == "system"]
        turns = [m.to_dict() for m in messages if m.role != "system"]
        system = "\n\n".join(system_parts) if system_parts else None
        return system, turns

    async def _chat(self, messages: List[ChatMessage], model: Optional[str]) -> ChatResponse:
        model_id = model or self.chat_model
        system, turns = self.split_system(messages)

        kwargs = {
            "model": model_id,
            "max_tokens": self.max_tokens,
            "messages": turns,
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self.client.messages.create(**kwargs)
        except APIError as e:
            raise ProviderUnavailable(self.name, f"chat failed: {e}")

        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        return ChatResponse(
            content=content,
            tokens_input=response.usage.input_tokens,
            tokens_output=response.usage.output_tokens,
            model=response.model or model_id,
        )

    async def _list_models(self) -> List[str]:
        return list(KNOWN_MODELS)
