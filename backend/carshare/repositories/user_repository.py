# backend/carshare/repositories/user_repository.py
"""
User Repository

Balance-changing callers lock user rows through ``lock_many`` so that two
ledger operations touching the same users always acquire locks in the same
(id) order.
"""

import logging
from typing import Dict, Iterable, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.user import User
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    """Repository for User data access."""

    def __init__(self, db: Session):
        super().__init__(db, User)
        self.logger = logging.getLogger(__name__)

    def lock_many(self, user_ids: Iterable[str]) -> Dict[str, User]:
        """
        Load and lock users in ascending id order.

        Deleted users are included: a soft-deleted owner still has escrow
        to settle.
        """
        ordered = sorted({uid for uid in user_ids if uid})
        if not ordered:
            return {}
        try:
            query = (
                self._build_query(include_deleted=True)
                .filter(User.id.in_(ordered))
                .order_by(User.id)
            )
            users: List[User] = self._lock(query).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking users {ordered}: {str(e)}")
            raise RepositoryException(f"Failed to lock users: {str(e)}") from e
        return {user.id: user for user in users}
