"""
Tests for context assembly

Covers the parent walk, child/feature sections, the capped feature list
and the best-effort related-contexts section.
"""

import asyncio
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import select

from app.config import Settings
from app.db.models import ContextSpace, Embedding, FeatureRequest
from app.errors import NotFound, ProviderUnavailable
from app.services.ai.rag import RAGService

from conftest import FakeFactory, FakeProvider


def make_space(org, name, parent=None, description=None, **kwargs):
    return ContextSpace(
        organization_id=org.id,
        parent_id=parent.id if parent else None,
        name=name,
        description=description,
        created_by="admin-1",
        **kwargs,
    )


@pytest_asyncio.fixture
async def tree(db_session, org):
    """Company > Product > Checkout, plus a sibling under Product"""
    company = make_space(org, "Company", description="Whole company")
    db_session.add(company)
    await db_session.flush()
    product = make_space(org, "Product", parent=company, description="Product org")
    db_session.add(product)
    await db_session.flush()
    checkout = make_space(org, "Checkout", parent=product, type="team")
    sibling = make_space(org, "Search", parent=product)
    db_session.add_all([checkout, sibling])
    await db_session.commit()
    return company, product, checkout, sibling


@pytest.fixture
def rag(db_session, fake_factory, usage):
    return RAGService(db_session, factory=fake_factory, usage=usage)


class TestParentChain:
    """Ancestors nearest-first, always terminating"""

    @pytest.mark.asyncio
    async def test_nearest_first(self, rag, tree):
        company, product, checkout, _ = tree

        chain = await rag.get_parent_chain(checkout.parent_id)

        assert [s.name for s in chain] == ["Product", "Company"]

    @pytest.mark.asyncio
    async def test_cycle_terminates(self, db_session, rag, tree):
        company, product, _, _ = tree
        # Corrupt the tree directly: Company -> Product -> Company
        company.parent_id = product.id
        await db_session.commit()

        chain = await rag.get_parent_chain(product.id)

        assert [s.name for s in chain] == ["Product", "Company"]

    @pytest.mark.asyncio
    async def test_depth_cap(self, db_session, org, fake_factory, usage):
        parent = None
        for i in range(6):
            space = make_space(org, f"Level {i}", parent=parent)
            db_session.add(space)
            await db_session.flush()
            parent = space
        await db_session.commit()
        rag = RAGService(db_session, factory=fake_factory, usage=usage,
                         config=Settings(rag_max_ancestor_depth=3))

        chain = await rag.get_parent_chain(parent.id)

        assert len(chain) == 3


class TestContextAssembly:
    """Section layout of the assembled text"""

    @pytest.mark.asyncio
    async def test_sections(self, db_session, rag, tree, org):
        _, product, checkout, _ = tree
        db_session.add(FeatureRequest(
            context_space_id=product.id, title="Saved carts", description="Keep carts for a week",
            created_by="member-1",
        ))
        await db_session.commit()

        context = await rag.get_context_for_space(product.id, "admin-1", org.id)

        assert context.startswith("# Context Space: Product")
        assert "\nDescription: Product org" in context
        assert "## Parent Spaces:\n- Company: Whole company" in context
        children = context.split("## Child Spaces:\n")[1].split("\n\n")[0].splitlines()
        assert sorted(children) == ["- Checkout", "- Search"]
        assert "## Feature Requests (1 total):\n- Saved carts: Keep carts for a week" in context

    @pytest.mark.asyncio
    async def test_ancestors_exclude_self(self, rag, tree, org):
        _, _, checkout, _ = tree

        context = await rag.get_context_for_space(checkout.id, "admin-1", org.id)

        parents = context.split("## Parent Spaces:")[1].split("\n## ")[0]
        assert "Checkout" not in parents
        assert parents.index("Product") < parents.index("Company")
        assert "Type: team" in context

    @pytest.mark.asyncio
    async def test_empty_sections_omitted(self, db_session, rag, org):
        lonely = make_space(org, "Lonely")
        db_session.add(lonely)
        await db_session.commit()

        context = await rag.get_context_for_space(lonely.id, "admin-1", org.id)

        assert context == "# Context Space: Lonely"

    @pytest.mark.asyncio
    async def test_feature_list_capped(self, db_session, rag, tree, org):
        _, _, checkout, _ = tree
        db_session.add_all([
            FeatureRequest(context_space_id=checkout.id, title=f"Feature {i}", created_by="member-1")
            for i in range(60)
        ])
        await db_session.commit()

        context = await rag.get_context_for_space(checkout.id, "admin-1", org.id)

        assert "## Feature Requests (60 total):" in context
        listed = [line for line in context.splitlines() if line.startswith("- Feature ")]
        assert len(listed) == 50

    @pytest.mark.asyncio
    async def test_missing_space(self, rag, org):
        with pytest.raises(NotFound):
            await rag.get_context_for_space("nope", "admin-1", org.id)

    @pytest.mark.asyncio
    async def test_pipeline_timeout(self, db_session, org, fake_factory, usage, tree):
        rag = RAGService(db_session, factory=fake_factory, usage=usage,
                         config=Settings(ai_context_timeout=0.05))

        async def slow(*args):
            await asyncio.sleep(5)

        with patch.object(rag, "_build_context", side_effect=slow):
            with pytest.raises(ProviderUnavailable):
                await rag.get_context_for_space(tree[0].id, "admin-1", org.id)


class TestRelatedContexts:
    """Similar content from other spaces, never fatal"""

    @pytest.mark.asyncio
    async def test_related_section(self, db_session, org, other_org, usage):
        payments = make_space(org, "Payments", description="Payments flow")
        billing = make_space(org, "Billing", description="Invoices and billing")
        growth = make_space(org, "Growth", description="Marketing")
        foreign = make_space(other_org, "Foreign", description="Payments flow")
        db_session.add_all([payments, billing, growth, foreign])
        await db_session.commit()

        provider = FakeProvider(vectors={"Payments flow": [1.0, 0.0]})
        rag = RAGService(db_session, factory=FakeFactory(provider), usage=usage)
        await rag.store_embedding(payments.id, "description", payments.id, "Payments flow", [1.0, 0.0])
        await rag.store_embedding(billing.id, "description", billing.id, "Invoices and billing", [0.95, 0.1])
        await rag.store_embedding(growth.id, "description", growth.id, "Marketing", [0.0, 1.0])
        await rag.store_embedding(foreign.id, "description", foreign.id, "Payments flow", [1.0, 0.0])

        context = await rag.get_context_for_space(payments.id, "admin-1", org.id)

        related = context.split("## Related Contexts:\n")[1]
        assert related.startswith("- Invoices and billing (similarity: 0.99)")
        assert "Marketing" not in related
        assert "Payments flow" not in related
        assert provider.embed_calls == ["Payments flow"]
        assert usage.log_usage.call_count == 1
        assert usage.log_usage.call_args.args[0].capability == "embeddings"

    @pytest.mark.asyncio
    async def test_own_items_do_not_crowd_out_other_spaces(self, db_session, org, usage):
        payments = make_space(org, "Payments", description="Payments flow")
        billing = make_space(org, "Billing", description="Invoices and billing")
        db_session.add_all([payments, billing])
        await db_session.commit()

        provider = FakeProvider(vectors={"Payments flow": [1.0, 0.0]})
        rag = RAGService(db_session, factory=FakeFactory(provider), usage=usage)
        await rag.store_embedding(payments.id, "description", payments.id, "Payments flow", [1.0, 0.0])
        for i in range(25):
            await rag.store_embedding(payments.id, "item", f"item-{i}", f"Own item {i}", [1.0, 0.01])
        await rag.store_embedding(billing.id, "description", billing.id, "Invoices and billing", [0.95, 0.1])

        context = await rag.get_context_for_space(payments.id, "admin-1", org.id)

        assert "## Related Contexts:" in context
        related = context.split("## Related Contexts:\n")[1]
        assert related == "- Invoices and billing (similarity: 0.99)"

    @pytest.mark.asyncio
    async def test_embedding_failure_omits_section(self, db_session, org, usage):
        space = make_space(org, "Payments", description="Payments flow")
        db_session.add(space)
        await db_session.commit()

        class BrokenProvider(FakeProvider):
            async def _embed(self, text, model):
                raise ProviderUnavailable("fake", "down")

        rag = RAGService(db_session, factory=FakeFactory(BrokenProvider()), usage=usage)

        context = await rag.get_context_for_space(space.id, "admin-1", org.id)

        assert context == "# Context Space: Payments\n\nDescription: Payments flow"


class TestEmbedding:
    """Embedding content on write"""

    @pytest.mark.asyncio
    async def test_cleared_description_drops_embedding(self, db_session, rag, tree, org):
        company = tree[0]
        await rag.embed_context_space(company.id, "admin-1", org.id)
        company.description = None
        await db_session.commit()

        await rag.embed_context_space(company.id, "admin-1", org.id)

        rows = (await db_session.execute(select(Embedding))).scalars().all()
        assert rows == []

    @pytest.mark.asyncio
    async def test_reembed_all(self, db_session, rag, tree, org):
        db_session.add(FeatureRequest(context_space_id=tree[2].id, title="One", created_by="member-1"))
        await db_session.commit()

        totals = await rag.reembed_all(org.id, "admin-1")

        assert totals == {"spaces": 2, "features": 1}
        rows = (await db_session.execute(select(Embedding))).scalars().all()
        assert {r.source_type for r in rows} == {"description", "item"}
