"""
Context Space Service - CRUD over the tenant-scoped space tree.

Tree invariants enforced on write:
- a parent must exist and belong to the same organization
- reparenting must not create a cycle at any depth
- a space with children cannot be deleted
Deleting a space removes its feature requests and embeddings.
"""

import logging
from typing import Dict, List, Optional, Union

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import AIConversation, ContextSpace, Embedding, FeatureRequest
from app.errors import NotFound, PermissionDenied, StructuralError
from app.schemas import (
    ContextSpaceCreate, ContextSpaceTreeNode, ContextSpaceUpdate, parse_input,
)
from app.services.ai.rag import RAGService
from app.services.permissions import (
    can_delete_context_space, can_edit_context_space, can_view_context_space,
    get_organization_member, require,
)

logger = logging.getLogger(__name__)


class ContextSpaceService:
    def __init__(self, db: AsyncSession, rag: Optional[RAGService] = None):
        self.db = db
        self.rag = rag or RAGService(db)

    async def _require_member(self, user_id: str, organization_id: str) -> None:
        if await get_organization_member(self.db, user_id, organization_id) is None:
            raise PermissionDenied("You are not a member of this organization")

    async def _load(self, space_id: str) -> ContextSpace:
        space = await self.db.get(ContextSpace, space_id)
        if space is None:
            raise NotFound("Context space", space_id)
        return space

    async def get(self, space_id: str, user_id: str) -> ContextSpace:
        space = await self._load(space_id)
        require(
            await can_view_context_space(self.db, user_id, space),
            "You do not have permission to view this context space",
        )
        return space

    async def list(
        self,
        user_id: str,
        organization_id: str,
        parent_id: Optional[str] = None,
        include_children: bool = False,
    ) -> List[ContextSpace]:
        """Root-level spaces by default, the children of ``parent_id`` when given, or everything."""
        await self._require_member(user_id, organization_id)
        query = select(ContextSpace).where(ContextSpace.organization_id == organization_id)
        if parent_id is not None:
            query = query.where(ContextSpace.parent_id == parent_id)
        elif not include_children:
            query = query.where(ContextSpace.parent_id.is_(None))
        result = await self.db.execute(query.order_by(ContextSpace.created_at))
        return list(result.scalars().all())

    async def get_tree(self, user_id: str, organization_id: str) -> List[ContextSpaceTreeNode]:
        spaces = await self.list(user_id, organization_id, include_children=True)
        nodes: Dict[str, ContextSpaceTreeNode] = {
            s.id: ContextSpaceTreeNode.model_validate(s) for s in spaces
        }
        roots: List[ContextSpaceTreeNode] = []
        for space in spaces:
            node = nodes[space.id]
            parent = nodes.get(space.parent_id) if space.parent_id else None
            if parent is not None and parent is not node:
                parent.children.append(node)
            else:
                roots.append(node)
        return roots

    async def get_ancestors(self, space_id: str, user_id: str) -> List[ContextSpace]:
        """Ancestors root-first (breadcrumb order), excluding the space itself."""
        space = await self.get(space_id, user_id)
        chain = await self.rag.get_parent_chain(space.parent_id)
        return [s for s in reversed(chain) if s.id != space.id]

    async def _validate_parent(self, parent_id: str, user_id: str, organization_id: str) -> ContextSpace:
        parent = await self.db.get(ContextSpace, parent_id)
        if parent is None:
            raise NotFound("Context space", parent_id)
        if parent.organization_id != organization_id:
            raise StructuralError("Parent space belongs to a different organization")
        require(
            await can_view_context_space(self.db, user_id, parent),
            "You do not have permission to use this parent space",
        )
        return parent

    async def _would_create_cycle(self, space_id: str, new_parent_id: str) -> bool:
        """True if ``space_id`` is ``new_parent_id`` or one of its ancestors."""
        visited = set()
        current_id: Optional[str] = new_parent_id
        while current_id is not None and current_id not in visited:
            if current_id == space_id:
                return True
            visited.add(current_id)
            current_id = (await self.db.execute(
                select(ContextSpace.parent_id).where(ContextSpace.id == current_id)
            )).scalar_one_or_none()
        # Chain loops back on itself without reaching space_id
        return current_id is not None

    async def create(
        self,
        user_id: str,
        organization_id: str,
        data: Union[ContextSpaceCreate, dict],
    ) -> ContextSpace:
        data = parse_input(ContextSpaceCreate, data)
        await self._require_member(user_id, organization_id)
        if data.parent_id:
            await self._validate_parent(data.parent_id, user_id, organization_id)

        space = ContextSpace(
            organization_id=organization_id,
            parent_id=data.parent_id or None,
            name=data.name,
            description=data.description or None,
            type=data.type or None,
            created_by=user_id,
        )
        self.db.add(space)
        await self.db.commit()
        await self.db.refresh(space)
        logger.info(f"Created context space {space.id} in org {organization_id}")

        if space.description:
            await self._refresh_embedding(space, user_id)
        return space

    async def update(
        self,
        space_id: str,
        user_id: str,
        data: Union[ContextSpaceUpdate, dict],
    ) -> ContextSpace:
        data = parse_input(ContextSpaceUpdate, data)
        space = await self._load(space_id)
        require(
            await can_edit_context_space(self.db, user_id, space),
            "You do not have permission to edit this context space",
        )

        fields = data.model_fields_set
        if "parent_id" in fields and data.parent_id is not None:
            if data.parent_id == space.id:
                raise StructuralError("A context space cannot be its own parent")
            await self._validate_parent(data.parent_id, user_id, space.organization_id)
            if await self._would_create_cycle(space.id, data.parent_id):
                raise StructuralError("Moving this space there would create a cycle")

        description_changed = False
        if "name" in fields and data.name is not None:
            space.name = data.name
        if "description" in fields:
            description_changed = (data.description or None) != space.description
            space.description = data.description or None
        if "type" in fields:
            space.type = data.type or None
        if "parent_id" in fields:
            space.parent_id = data.parent_id

        await self.db.commit()
        await self.db.refresh(space)

        if description_changed:
            await self._refresh_embedding(space, user_id)
        return space

    async def delete(self, space_id: str, user_id: str) -> None:
        space = await self._load(space_id)
        require(
            await can_delete_context_space(self.db, user_id, space),
            "You do not have permission to delete this context space",
        )

        children = (await self.db.execute(
            select(func.count(ContextSpace.id)).where(ContextSpace.parent_id == space.id)
        )).scalar_one()
        if children:
            raise StructuralError("Cannot delete a context space with children. Delete children first.")

        await self.rag.vectors.delete_for_space(space.id)
        await self.db.execute(delete(FeatureRequest).where(FeatureRequest.context_space_id == space.id))
        await self.db.execute(
            update(AIConversation)
            .where(AIConversation.context_space_id == space.id)
            .values(context_space_id=None)
        )
        await self.db.delete(space)
        await self.db.commit()
        logger.info(f"Deleted context space {space_id}")

    async def _refresh_embedding(self, space: ContextSpace, user_id: str) -> None:
        """Best-effort: a missing or failing embedding provider never blocks the write."""
        try:
            await self.rag.embed_context_space(space.id, user_id, space.organization_id)
        except SQLAlchemyError as e:
            logger.warning(f"Could not store embedding for context space {space.id}: {e}")
            await self.db.rollback()
            await self.db.refresh(space)
        except Exception as e:
            logger.warning(f"Could not embed context space {space.id}: {e}")
