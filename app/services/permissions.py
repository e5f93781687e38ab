"""
Role checks for context spaces and feature requests.

- View: any member of the space's organization
- Edit: the creator, or an admin / manager
- Delete: the creator, or an admin
Feature requests: the creator, or anyone who may edit the space.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import ContextSpace, FeatureRequest, MemberRole, OrganizationMember
from app.errors import PermissionDenied


async def get_organization_member(
    db: AsyncSession, user_id: str, organization_id: str
) -> Optional[OrganizationMember]:
    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.organization_id == organization_id,
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def can_view_context_space(db: AsyncSession, user_id: str, space: ContextSpace) -> bool:
    return await get_organization_member(db, user_id, space.organization_id) is not None


async def can_edit_context_space(db: AsyncSession, user_id: str, space: ContextSpace) -> bool:
    if space.created_by == user_id:
        return True
    member = await get_organization_member(db, user_id, space.organization_id)
    return member is not None and member.role in (MemberRole.ADMIN.value, MemberRole.MANAGER.value)


async def can_delete_context_space(db: AsyncSession, user_id: str, space: ContextSpace) -> bool:
    if space.created_by == user_id:
        return True
    member = await get_organization_member(db, user_id, space.organization_id)
    return member is not None and member.role == MemberRole.ADMIN.value


async def can_edit_feature_request(
    db: AsyncSession, user_id: str, feature: FeatureRequest, space: ContextSpace
) -> bool:
    return feature.created_by == user_id or await can_edit_context_space(db, user_id, space)


def require(allowed: bool, message: str) -> None:
    if not allowed:
        raise PermissionDenied(message)
