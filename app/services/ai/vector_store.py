"""
Vector store over the ``embeddings`` table.

PostgreSQL ranks with pgvector's cosine distance operator. Other backends
(SQLite in development and tests) load the candidate rows and rank with
numpy. Either way similarity = 1 - cosine distance, sorted descending.
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import is_postgres
from app.db.models import ContextSpace, Embedding

logger = logging.getLogger(__name__)


@dataclass
class SimilarResult:
    id: str
    context_space_id: str
    source_type: str
    source_id: str
    content: str
    similarity: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clamped to [-1, 1]; 0 for zero-length vectors."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


class VectorStore:
    """Upsert and nearest-neighbour search for content embeddings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find(self, context_space_id: str, source_type: str, source_id: str) -> Optional[Embedding]:
        result = await self.db.execute(
            select(Embedding).where(
                Embedding.context_space_id == context_space_id,
                Embedding.source_type == source_type,
                Embedding.source_id == source_id,
            )
        )
        return result.scalar_one_or_none()

    def _apply(self, record: Embedding, content: str, vector: List[float]) -> None:
        record.content = content
        record.embedding_json = json.dumps(list(vector))
        if is_postgres(self.db):
            record.embedding = list(vector)

    async def store(
        self,
        context_space_id: str,
        source_type: str,
        source_id: str,
        content: str,
        vector: List[float],
    ) -> Embedding:
        """
        Insert or overwrite the embedding for (context_space_id, source_type,
        source_id). Concurrent writers to the same triple: last one wins.
        """
        record = await self._find(context_space_id, source_type, source_id)
        if record is None:
            record = Embedding(
                context_space_id=context_space_id,
                source_type=source_type,
                source_id=source_id,
            )
            self._apply(record, content, vector)
            self.db.add(record)
            try:
                await self.db.commit()
            except IntegrityError:
                # Another writer inserted the same triple first
                await self.db.rollback()
                record = await self._find(context_space_id, source_type, source_id)
                self._apply(record, content, vector)
                await self.db.commit()
        else:
            self._apply(record, content, vector)
            await self.db.commit()

        await self.db.refresh(record)
        return record

    async def delete_for_source(self, source_type: str, source_id: str) -> int:
        result = await self.db.execute(
            delete(Embedding).where(
                Embedding.source_type == source_type,
                Embedding.source_id == source_id,
            )
        )
        return result.rowcount or 0

    async def delete_for_space(self, context_space_id: str) -> int:
        result = await self.db.execute(
            delete(Embedding).where(Embedding.context_space_id == context_space_id)
        )
        return result.rowcount or 0

    async def search_similar(
        self,
        query_vector: List[float],
        context_space_id: Optional[str] = None,
        limit: int = 10,
        organization_id: Optional[str] = None,
        source_type: Optional[str] = None,
        context_space_ids: Optional[Sequence[str]] = None,
        exclude_context_space_id: Optional[str] = None,
    ) -> List[SimilarResult]:
        """
        Rank stored embeddings by similarity to ``query_vector``.

        Optional exact-match filters: one container, a set of containers,
        an organization (via the owning container) and a source type.
        ``exclude_context_space_id`` drops one container before ranking.
        Returns an empty list when nothing is stored.
        """
        filters = []
        if context_space_id is not None:
            filters.append(Embedding.context_space_id == context_space_id)
        if context_space_ids is not None:
            filters.append(Embedding.context_space_id.in_(list(context_space_ids)))
        if exclude_context_space_id is not None:
            filters.append(Embedding.context_space_id != exclude_context_space_id)
        if source_type is not None:
            filters.append(Embedding.source_type == source_type)
        if organization_id is not None:
            filters.append(
                Embedding.context_space_id.in_(
                    select(ContextSpace.id).where(ContextSpace.organization_id == organization_id)
                )
            )

        if is_postgres(self.db):
            return await self._search_pgvector(query_vector, filters, limit)
        return await self._search_in_memory(query_vector, filters, limit)

    async def _search_pgvector(self, query_vector, filters, limit) -> List[SimilarResult]:
        distance = Embedding.embedding.cosine_distance(list(query_vector))
        query = (
            select(Embedding, (1 - distance).label("similarity"))
            .where(Embedding.embedding.isnot(None), *filters)
            .order_by(distance)
            .limit(limit)
        )
        rows = (await self.db.execute(query)).all()
        return [
            self._to_result(record, max(-1.0, min(1.0, float(similarity))))
            for record, similarity in rows
        ]

    async def _search_in_memory(self, query_vector, filters, limit) -> List[SimilarResult]:
        query = select(Embedding).where(Embedding.embedding_json.isnot(None), *filters)
        records = (await self.db.execute(query)).scalars().all()

        expected_dim = len(query_vector)
        scored = []
        for record in records:
            vector = json.loads(record.embedding_json)
            if len(vector) != expected_dim:
                logger.warning(
                    f"Skipping embedding {record.id}: dimension {len(vector)} != {expected_dim}"
                )
                continue
            scored.append((record, cosine_similarity(query_vector, vector)))

        # Stable sort keeps scan order for ties
        scored.sort(key=lambda x: x[1], reverse=True)
        return [self._to_result(record, similarity) for record, similarity in scored[:limit]]

    @staticmethod
    def _to_result(record: Embedding, similarity: float) -> SimilarResult:
        return SimilarResult(
            id=record.id,
            context_space_id=record.context_space_id,
            source_type=record.source_type,
            source_id=record.source_id,
            content=record.content,
            similarity=similarity,
        )
