"""
Shared fixtures: a fresh in-memory database per test, an organization with
members, and a scriptable provider that stands in for a vendor.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from typing import Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from app.config import Settings
from app.db import init_db, drop_db, async_session_maker
from app.db.models import Organization, OrganizationMember, MemberRole
from app.services.ai.factory import AIProviderFactory
from app.services.ai.types import AIProvider, ChatMessage, ChatResponse, EmbeddingResponse


class FakeProvider(AIProvider):
    """
    Provider whose answers are scripted per test.

    ``vectors`` maps exact input text to an embedding; unknown text gets
    ``default_vector``. ``reply`` is either a fixed string or a callable
    receiving the message list.
    """

    name = "fake"

    def __init__(
        self,
        reply="ok",
        vectors: Optional[Dict[str, List[float]]] = None,
        default_vector: Optional[List[float]] = None,
    ):
        super().__init__(timeout=5)
        self.reply = reply
        self.vectors = vectors or {}
        self.default_vector = default_vector or [0.0, 0.0, 1.0]
        self.chat_calls: List[List[ChatMessage]] = []
        self.embed_calls: List[str] = []

    async def _chat(self, messages, model):
        self.chat_calls.append(list(messages))
        content = self.reply(messages) if callable(self.reply) else self.reply
        return ChatResponse(content=content, tokens_input=10, tokens_output=5, model="fake-chat")

    async def _embed(self, text, model):
        self.embed_calls.append(text)
        return EmbeddingResponse(
            embedding=self.vectors.get(text, self.default_vector), tokens=3, model="fake-embed"
        )

    async def _list_models(self):
        return ["fake-chat", "fake-embed"]


class FakeFactory(AIProviderFactory):
    """Real resolution rules, but every vendor name yields the same fake provider."""

    def __init__(self, provider: AIProvider, config: Optional[Settings] = None):
        super().__init__(config or Settings())
        self.provider = provider

    def create_provider(self, provider_name: str) -> AIProvider:
        return self.provider


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create a fresh database for each test"""
    await init_db()
    yield
    await drop_db()


@pytest_asyncio.fixture
async def db_session():
    """Get a database session"""
    async with async_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def org(db_session):
    """Organization with an admin, a manager and two plain members"""
    organization = Organization(name="Acme")
    db_session.add(organization)
    await db_session.flush()
    for user_id, role in [
        ("admin-1", MemberRole.ADMIN),
        ("manager-1", MemberRole.MANAGER),
        ("member-1", MemberRole.MEMBER),
        ("member-2", MemberRole.MEMBER),
    ]:
        db_session.add(OrganizationMember(
            organization_id=organization.id, user_id=user_id, role=role.value
        ))
    await db_session.commit()
    return organization


@pytest_asyncio.fixture
async def other_org(db_session):
    """A second tenant with its own admin"""
    organization = Organization(name="Globex")
    db_session.add(organization)
    await db_session.flush()
    db_session.add(OrganizationMember(
        organization_id=organization.id, user_id="outsider-1", role=MemberRole.ADMIN.value
    ))
    await db_session.commit()
    return organization


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_factory(fake_provider):
    return FakeFactory(fake_provider)


@pytest.fixture
def usage():
    """Usage ledger stand-in; writes are asserted through ``log_usage`` calls"""
    return MagicMock()
