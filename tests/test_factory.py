"""
Tests for provider resolution and the embedding fallback
"""

import pytest

from app.config import Settings
from app.db.models import AIProviderConfig
from app.errors import ConfigurationError
from app.services.ai.factory import AIProviderFactory
from app.services.ai.providers import AnthropicProvider, OllamaProvider, OpenAIProvider


def settings_for(**overrides) -> Settings:
    values = dict(
        ai_default_provider="ollama",
        ai_embedding_fallback_provider="ollama",
        ai_ollama_url="http://localhost:11434",
        ai_ollama_chat_model="llama3.1",
        ai_ollama_embed_model="nomic-embed-text",
        ai_openai_api_key="sk-test",
        ai_openai_chat_model="gpt-4o-mini",
        ai_openai_embed_model="text-embedding-3-small",
        ai_anthropic_api_key="sk-ant-test",
        ai_anthropic_chat_model="claude-3-5-sonnet-20241022",
    )
    values.update(overrides)
    return Settings(**values)


class TestCreateProvider:
    """Building adapters from settings"""

    def test_builds_each_vendor(self):
        factory = AIProviderFactory(settings_for())

        assert isinstance(factory.create_provider("ollama"), OllamaProvider)
        assert isinstance(factory.create_provider("openai"), OpenAIProvider)
        assert isinstance(factory.create_provider("anthropic"), AnthropicProvider)

    def test_unknown_vendor(self):
        factory = AIProviderFactory(settings_for())

        with pytest.raises(ConfigurationError) as exc_info:
            factory.create_provider("mystery")
        assert "mystery" in str(exc_info.value)

    def test_missing_settings_are_named(self):
        factory = AIProviderFactory(settings_for(ai_ollama_url=None, ai_ollama_embed_model=None))

        with pytest.raises(ConfigurationError) as exc_info:
            factory.create_provider("ollama")
        assert exc_info.value.missing == ["AI_OLLAMA_URL", "AI_OLLAMA_EMBED_MODEL"]
        assert "AI_OLLAMA_URL" in str(exc_info.value)

    def test_request_timeout_is_applied(self):
        factory = AIProviderFactory(settings_for(ai_request_timeout=7.5))
        assert factory.create_provider("ollama").timeout == 7.5


class TestResolution:
    """Explicit preference, then organization default, then system default"""

    @pytest.mark.asyncio
    async def test_system_default(self):
        selection = await AIProviderFactory(settings_for()).get_provider("u1", "org-1")

        assert selection.provider_name == "ollama"
        assert selection.credential_source == "system"
        assert isinstance(selection.provider, OllamaProvider)

    @pytest.mark.asyncio
    async def test_preferred_vendor_wins(self):
        selection = await AIProviderFactory(settings_for()).get_provider("u1", "org-1", preferred="anthropic")
        assert selection.provider_name == "anthropic"

    @pytest.mark.asyncio
    async def test_organization_default(self, db_session, org):
        db_session.add(AIProviderConfig(organization_id=org.id, provider="openai", is_default=True))
        await db_session.commit()
        factory = AIProviderFactory(settings_for())

        selection = await factory.get_provider("admin-1", org.id, db=db_session)
        other = await factory.get_provider("outsider-1", "another-org", db=db_session)

        assert selection.provider_name == "openai"
        assert other.provider_name == "ollama"

    @pytest.mark.asyncio
    async def test_missing_credentials_surface(self):
        factory = AIProviderFactory(settings_for(ai_default_provider="openai", ai_openai_api_key=None))

        with pytest.raises(ConfigurationError) as exc_info:
            await factory.get_provider("u1", "org-1")
        assert "AI_OPENAI_API_KEY" in exc_info.value.missing


class TestEmbeddingProvider:
    """Embedding requests never land on a vendor that cannot embed"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("default", ["ollama", "openai", "anthropic"])
    async def test_never_returns_chat_only_vendor(self, default):
        factory = AIProviderFactory(settings_for(ai_default_provider=default))

        selection = await factory.get_embedding_provider("u1", "org-1")

        assert selection.provider.supports_embeddings
        assert factory.supports_embeddings(selection.provider_name)

    @pytest.mark.asyncio
    async def test_anthropic_falls_back_to_configured_vendor(self):
        factory = AIProviderFactory(settings_for(
            ai_default_provider="anthropic", ai_embedding_fallback_provider="openai"
        ))

        selection = await factory.get_embedding_provider("u1", "org-1")

        assert selection.provider_name == "openai"
        assert isinstance(selection.provider, OpenAIProvider)
        assert selection.credential_source == "system"

    @pytest.mark.asyncio
    async def test_fallback_that_cannot_embed(self):
        factory = AIProviderFactory(settings_for(
            ai_default_provider="anthropic", ai_embedding_fallback_provider="anthropic"
        ))

        with pytest.raises(ConfigurationError):
            await factory.get_embedding_provider("u1", "org-1")

    @pytest.mark.asyncio
    async def test_list_available_models(self):
        factory = AIProviderFactory(settings_for(ai_default_provider="anthropic"))
        models = await factory.list_available_models()
        assert "claude-3-5-sonnet-20241022" in models
