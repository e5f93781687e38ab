"""
Tests for embedding upsert and similarity search
"""

import math

import pytest
import pytest_asyncio
from sqlalchemy import select, func

from app.db.models import ContextSpace, Embedding
from app.services.ai.vector_store import VectorStore, cosine_similarity


@pytest_asyncio.fixture
async def spaces(db_session, org, other_org):
    """Two spaces in org, one in other_org"""
    a = ContextSpace(organization_id=org.id, name="Payments", created_by="admin-1")
    b = ContextSpace(organization_id=org.id, name="Search", created_by="admin-1")
    c = ContextSpace(organization_id=other_org.id, name="Foreign", created_by="outsider-1")
    db_session.add_all([a, b, c])
    await db_session.commit()
    return a, b, c


class TestCosineSimilarity:
    def test_identical_and_opposite(self):
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)

    def test_zero_vector(self):
        assert cosine_similarity([0, 0], [1, 1]) == 0.0


class TestUpsert:
    """One record per (space, source type, source id)"""

    @pytest.mark.asyncio
    async def test_second_store_overwrites(self, db_session, spaces):
        a, _, _ = spaces
        store = VectorStore(db_session)

        first = await store.store(a.id, "description", a.id, "old text", [1.0, 0.0])
        second = await store.store(a.id, "description", a.id, "new text", [0.0, 1.0])

        count = (await db_session.execute(select(func.count(Embedding.id)))).scalar_one()
        assert count == 1
        assert second.id == first.id
        assert second.content == "new text"

        results = await store.search_similar([0.0, 1.0])
        assert results[0].content == "new text"
        assert results[0].similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_distinct_triples_are_kept(self, db_session, spaces):
        a, _, _ = spaces
        store = VectorStore(db_session)

        await store.store(a.id, "description", a.id, "space", [1.0, 0.0])
        await store.store(a.id, "item", "feat-1", "feature", [1.0, 0.0])

        count = (await db_session.execute(select(func.count(Embedding.id)))).scalar_one()
        assert count == 2


class TestSearch:
    """Ranking and filters"""

    @pytest.mark.asyncio
    async def test_empty_store(self, db_session):
        assert await VectorStore(db_session).search_similar([1.0, 0.0]) == []

    @pytest.mark.asyncio
    async def test_sorted_and_bounded(self, db_session, spaces):
        a, b, _ = spaces
        store = VectorStore(db_session)
        await store.store(a.id, "item", "1", "exact", [1.0, 0.0])
        await store.store(a.id, "item", "2", "diagonal", [1.0, 1.0])
        await store.store(b.id, "item", "3", "orthogonal", [0.0, 1.0])
        await store.store(b.id, "item", "4", "opposite", [-1.0, 0.0])

        results = await store.search_similar([1.0, 0.0], limit=10)

        assert [r.content for r in results] == ["exact", "diagonal", "orthogonal", "opposite"]
        sims = [r.similarity for r in results]
        assert sims == sorted(sims, reverse=True)
        assert all(-1.0 <= s <= 1.0 for s in sims)
        assert sims[1] == pytest.approx(1 / math.sqrt(2))

    @pytest.mark.asyncio
    async def test_limit(self, db_session, spaces):
        a, _, _ = spaces
        store = VectorStore(db_session)
        for i in range(5):
            await store.store(a.id, "item", str(i), f"item {i}", [1.0, float(i)])

        assert len(await store.search_similar([1.0, 0.0], limit=2)) == 2

    @pytest.mark.asyncio
    async def test_space_filter(self, db_session, spaces):
        a, b, _ = spaces
        store = VectorStore(db_session)
        await store.store(a.id, "item", "1", "in a", [1.0, 0.0])
        await store.store(b.id, "item", "2", "in b", [1.0, 0.0])

        results = await store.search_similar([1.0, 0.0], context_space_id=b.id)

        assert [r.context_space_id for r in results] == [b.id]

    @pytest.mark.asyncio
    async def test_exclude_space_before_limit(self, db_session, spaces):
        a, b, _ = spaces
        store = VectorStore(db_session)
        for i in range(5):
            await store.store(a.id, "item", f"a-{i}", f"in a {i}", [1.0, 0.0])
        await store.store(b.id, "item", "b-1", "in b", [0.9, 0.1])

        results = await store.search_similar([1.0, 0.0], exclude_context_space_id=a.id, limit=1)

        assert [r.source_id for r in results] == ["b-1"]

    @pytest.mark.asyncio
    async def test_organization_and_source_type_filters(self, db_session, spaces, org):
        a, b, c = spaces
        store = VectorStore(db_session)
        await store.store(a.id, "description", a.id, "a description", [1.0, 0.0])
        await store.store(b.id, "item", "feat-1", "b item", [1.0, 0.0])
        await store.store(c.id, "description", c.id, "foreign description", [1.0, 0.0])

        results = await store.search_similar(
            [1.0, 0.0], organization_id=org.id, source_type="description"
        )

        assert [r.source_id for r in results] == [a.id]

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_skipped(self, db_session, spaces):
        a, _, _ = spaces
        store = VectorStore(db_session)
        await store.store(a.id, "item", "1", "two dims", [1.0, 0.0])
        await store.store(a.id, "item", "2", "three dims", [1.0, 0.0, 0.0])

        results = await store.search_similar([1.0, 0.0])

        assert [r.content for r in results] == ["two dims"]

    @pytest.mark.asyncio
    async def test_delete_for_space(self, db_session, spaces):
        a, b, _ = spaces
        store = VectorStore(db_session)
        await store.store(a.id, "item", "1", "a", [1.0, 0.0])
        await store.store(b.id, "item", "2", "b", [1.0, 0.0])

        assert await store.delete_for_space(a.id) == 1
        await db_session.commit()

        results = await store.search_similar([1.0, 0.0])
        assert [r.context_space_id for r in results] == [b.id]
