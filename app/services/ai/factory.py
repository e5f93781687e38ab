"""
AI Provider Factory - decides which vendor and credentials serve a request.

Resolution order for the vendor: explicit preference, then the
organization's default (ai_provider_config row with is_default), then the
system default from settings. Credentials currently come from the system
tier only; the returned ``credential_source`` already carries the
user / organization / system tag so the other tiers can be added without
changing callers.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Type

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.db.models import AIProviderConfig, CredentialSource
from app.errors import ConfigurationError
from app.services.ai.types import AIProvider
from app.services.ai.providers import AnthropicProvider, OllamaProvider, OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: Dict[str, Type[AIProvider]] = {
    "ollama": OllamaProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}

# (settings attribute, environment variable) pairs each vendor needs
REQUIRED_SETTINGS: Dict[str, List[Tuple[str, str]]] = {
    "ollama": [
        ("ai_ollama_url", "AI_OLLAMA_URL"),
        ("ai_ollama_chat_model", "AI_OLLAMA_CHAT_MODEL"),
        ("ai_ollama_embed_model", "AI_OLLAMA_EMBED_MODEL"),
    ],
    "openai": [
        ("ai_openai_api_key", "AI_OPENAI_API_KEY"),
        ("ai_openai_chat_model", "AI_OPENAI_CHAT_MODEL"),
        ("ai_openai_embed_model", "AI_OPENAI_EMBED_MODEL"),
    ],
    "anthropic": [
        ("ai_anthropic_api_key", "AI_ANTHROPIC_API_KEY"),
        ("ai_anthropic_chat_model", "AI_ANTHROPIC_CHAT_MODEL"),
    ],
}


@dataclass
class ProviderSelection:
    """A ready-to-use provider plus where its credentials came from"""
    provider: AIProvider
    credential_source: str
    provider_name: str


class AIProviderFactory:
    """
    Builds provider adapters from an immutable settings snapshot.

    Usage:
        factory = get_provider_factory()
        selection = await factory.get_provider(user_id, org_id)
        response = await selection.provider.chat(messages)
    """

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or get_settings()

    def supports_embeddings(self, provider_name: str) -> bool:
        cls = PROVIDER_CLASSES.get(provider_name)
        return bool(cls and cls.supports_embeddings)

    def create_provider(self, provider_name: str) -> AIProvider:
        """Instantiate one vendor adapter from system settings."""
        if provider_name not in PROVIDER_CLASSES:
            raise ConfigurationError(
                f"Unknown AI provider '{provider_name}'. "
                f"Expected one of: {', '.join(sorted(PROVIDER_CLASSES))}"
            )

        missing = [
            env_name for attr, env_name in REQUIRED_SETTINGS[provider_name]
            if not getattr(self.config, attr)
        ]
        if missing:
            raise ConfigurationError(
                f"{provider_name} provider selected but required settings are not set: "
                f"{', '.join(missing)}",
                missing=missing,
            )

        c = self.config
        timeout = c.ai_request_timeout
        if provider_name == "ollama":
            return OllamaProvider(
                c.ai_ollama_url, c.ai_ollama_chat_model, c.ai_ollama_embed_model, timeout=timeout
            )
        if provider_name == "openai":
            return OpenAIProvider(
                c.ai_openai_api_key, c.ai_openai_chat_model, c.ai_openai_embed_model, timeout=timeout
            )
        return AnthropicProvider(
            c.ai_anthropic_api_key,
            c.ai_anthropic_chat_model,
            max_tokens=c.ai_anthropic_max_tokens,
            timeout=timeout,
        )

    async def _organization_default(
        self, db: Optional[AsyncSession], organization_id: str
    ) -> Optional[str]:
        if db is None:
            return None
        result = await db.execute(
            select(AIProviderConfig.provider).where(
                AIProviderConfig.organization_id == organization_id,
                AIProviderConfig.is_default == True,
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def resolve_provider_name(
        self,
        organization_id: str,
        preferred: Optional[str] = None,
        db: Optional[AsyncSession] = None,
    ) -> str:
        if preferred:
            return preferred
        org_default = await self._organization_default(db, organization_id)
        return org_default or self.config.ai_default_provider

    async def get_provider(
        self,
        user_id: str,
        organization_id: str,
        preferred: Optional[str] = None,
        db: Optional[AsyncSession] = None,
    ) -> ProviderSelection:
        """Resolve the chat provider for a request."""
        name = await self.resolve_provider_name(organization_id, preferred, db)
        provider = self.create_provider(name)
        logger.debug(f"Resolved provider {name} for user {user_id} in org {organization_id}")
        return ProviderSelection(
            provider=provider,
            credential_source=CredentialSource.SYSTEM.value,
            provider_name=name,
        )

    async def get_embedding_provider(
        self,
        user_id: str,
        organization_id: str,
        db: Optional[AsyncSession] = None,
    ) -> ProviderSelection:
        """
        Resolve a provider that can embed.

        If the resolved vendor has no embeddings, the configured fallback
        vendor is substituted and reported in its place.
        """
        name = await self.resolve_provider_name(organization_id, None, db)
        if not self.supports_embeddings(name):
            fallback = self.config.ai_embedding_fallback_provider
            if not self.supports_embeddings(fallback):
                raise ConfigurationError(
                    f"Embedding fallback provider '{fallback}' cannot generate embeddings",
                    missing=["AI_EMBEDDING_FALLBACK_PROVIDER"],
                )
            logger.info(f"{name} has no embeddings, using {fallback} instead")
            name = fallback

        return ProviderSelection(
            provider=self.create_provider(name),
            credential_source=CredentialSource.SYSTEM.value,
            provider_name=name,
        )

    async def list_available_models(self, provider_name: Optional[str] = None) -> List[str]:
        provider = self.create_provider(provider_name or self.config.ai_default_provider)
        return await provider.list_models()


_factory: Optional[AIProviderFactory] = None


def get_provider_factory() -> AIProviderFactory:
    """Get the process-wide provider factory"""
    global _factory
    if _factory is None:
        _factory = AIProviderFactory(get_settings())
    return _factory
