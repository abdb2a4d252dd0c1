# backend/sessionbook/repositories/user_repository.py
"""User lookups needed by the booking engine."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models.user import User, UserRole
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session):
        super().__init__(db, User)

    def get_active_therapist(self, therapist_id: str) -> Optional[User]:
        """Return the therapist if the account exists, has the therapist role and is active."""
        return (
            self._build_query()
            .filter(
                User.id == therapist_id,
                User.role == UserRole.THERAPIST.value,
                User.is_active.is_(True),
            )
            .first()
        )

    def get_active_user(self, user_id: str) -> Optional[User]:
        return self._build_query().filter(User.id == user_id, User.is_active.is_(True)).first()
