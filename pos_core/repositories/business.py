"""
Business repository: businesses per owner and per type, and the
name-per-owner uniqueness check.
"""

import uuid
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.orm import selectinload

from pos_core.data.entities import Business, Shop
from pos_core.data.enums import BusinessType
from pos_core.repositories.base import BaseRepository


class BusinessRepository(BaseRepository[Business]):
    """Repository for Business entities"""

    entity_class = Business

    def get_businesses_by_owner(self, owner_id: uuid.UUID) -> List[Business]:
        statement = (
            self._active_query()
            .where(Business.owner_id == owner_id, Business.is_active.is_(True))
            .order_by(Business.name)
        )
        return self._fetch_all(statement, 'get_businesses_by_owner')

    def get_business_with_shops(self, business_id: uuid.UUID) -> Optional[Business]:
        statement = (
            self._active_query()
            .where(Business.id == business_id)
            .options(selectinload(Business.shops.and_(Shop.is_deleted.is_(False))))
            .execution_options(populate_existing=True)
        )
        return self._fetch_one(statement, 'get_business_with_shops')

    def get_businesses_by_type(self, business_type: BusinessType) -> List[Business]:
        statement = (
            self._active_query()
            .where(Business.business_type == business_type, Business.is_active.is_(True))
            .order_by(Business.name)
        )
        return self._fetch_all(statement, 'get_businesses_by_type')

    def is_business_name_unique(
        self,
        name: str,
        owner_id: uuid.UUID,
        exclude_business_id: Optional[uuid.UUID] = None
    ) -> bool:
        criteria = [Business.name == name, Business.owner_id == owner_id]
        if exclude_business_id is not None:
            criteria.append(Business.id != exclude_business_id)
        return not self._scalar(select(exists().where(*criteria)), 'is_business_name_unique')
