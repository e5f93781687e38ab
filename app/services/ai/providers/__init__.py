from app.services.ai.providers.ollama import OllamaProvider
from app.services.ai.providers.openai_provider import OpenAIProvider
from app.services.ai.providers.anthropic_provider import AnthropicProvider

__all__ = ["OllamaProvider", "OpenAIProvider", "AnthropicProvider"]
