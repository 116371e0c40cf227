"""
User repository: lookups by username and email and existence checks.
"""

from typing import List, Optional

from sqlalchemy import exists, func, select

from pos_core.data.entities import User
from pos_core.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User entities"""

    entity_class = User

    def get_by_username(self, username: str) -> Optional[User]:
        statement = self._active_query().where(User.username == username)
        return self._fetch_one(statement, 'get_by_username')

    def get_by_email(self, email: str) -> Optional[User]:
        statement = self._active_query().where(func.lower(User.email) == email.lower())
        return self._fetch_one(statement, 'get_by_email')

    def get_active_users(self) -> List[User]:
        statement = (
            self._active_query()
            .where(User.is_active.is_(True))
            .order_by(User.username)
        )
        return self._fetch_all(statement, 'get_active_users')

    def username_exists(self, username: str) -> bool:
        return bool(self._scalar(
            select(exists().where(User.username == username)),
            'username_exists'
        ))

    def email_exists(self, email: str) -> bool:
        return bool(self._scalar(
            select(exists().where(func.lower(User.email) == email.lower())),
            'email_exists'
        ))
