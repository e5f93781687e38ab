"""
Caller identity.

Authentication happens upstream; the identity provider forwards the
authenticated user and organization in the X-User-Id / X-Organization-Id
headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.services.permissions import get_organization_member


@dataclass
class Identity:
    user_id: str
    organization_id: str


async def get_current_identity(
    x_user_id: Optional[str] = Header(None),
    x_organization_id: Optional[str] = Header(None),
) -> Identity:
    """Dependency to get the (user, organization) pair for the request."""
    if not x_user_id or not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id or X-Organization-Id header",
        )
    return Identity(user_id=x_user_id, organization_id=x_organization_id)


async def get_current_member(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """Like get_current_identity, but the user must belong to the organization."""
    member = await get_organization_member(db, identity.user_id, identity.organization_id)
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this organization",
        )
    return identity
