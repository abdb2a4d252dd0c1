# backend/sessionbook/api/dependencies/auth.py
"""
Caller identity dependencies.

Authentication happens upstream; the engine receives the authenticated user
id in the ``X-User-Id`` header and only checks that the account is active
and, for staff tooling, that it has a staff role.
"""

import asyncio
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ...models.user import User, UserRole
from ...repositories.factory import RepositoryFactory
from .database import get_db

logger = logging.getLogger(__name__)

STAFF_ROLES = frozenset({UserRole.THERAPIST.value, UserRole.ADMIN.value})


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the caller from the identity header."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Missing caller identity", "code": "UNAUTHENTICATED"},
        )
    repository = RepositoryFactory.create_user_repository(db)
    user = await asyncio.to_thread(repository.get_active_user, x_user_id)
    if user is None:
        logger.info("Rejected request for unknown or inactive user %s", x_user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Unknown or inactive user", "code": "UNAUTHENTICATED"},
        )
    return user


async def require_staff(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Staff access required", "code": "FORBIDDEN"},
        )
    return current_user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Admin access required", "code": "FORBIDDEN"},
        )
    return current_user
