"""
UserRepository - Data access layer for User entities
"""

from typing import List
from repositories.base_repository import BaseRepository
from portal_database import User
from services.enums import UserRole


class UserRepository(BaseRepository[User]):
    """Repository for User data access"""

    def __init__(self, session):
        super().__init__(session, User)

    def find_admin_ids(self) -> List[int]:
        """IDs of active admin users, the recipients of admin notifications"""
        rows = self.session.query(User.id)\
            .filter(User.role == UserRole.ADMIN)\
            .filter(User.is_active.is_(True))\
            .order_by(User.id)\
            .all()
        return [row[0] for row in rows]
