"""
Shop repository: shops of a business and the name-per-business uniqueness check.
"""

import uuid
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.orm import selectinload

from pos_core.data.entities import Shop
from pos_core.repositories.base import BaseRepository


class ShopRepository(BaseRepository[Shop]):
    """Repository for Shop entities"""

    entity_class = Shop

    def get_shops_by_business(self, business_id: uuid.UUID) -> List[Shop]:
        statement = (
            self._active_query()
            .where(Shop.business_id == business_id, Shop.is_active.is_(True))
            .order_by(Shop.name)
        )
        return self._fetch_all(statement, 'get_shops_by_business')

    def get_shop_with_business(self, shop_id: uuid.UUID) -> Optional[Shop]:
        statement = (
            self._active_query()
            .where(Shop.id == shop_id)
            .options(selectinload(Shop.business))
        )
        return self._fetch_one(statement, 'get_shop_with_business')

    def is_shop_name_unique(
        self,
        name: str,
        business_id: uuid.UUID,
        exclude_shop_id: Optional[uuid.UUID] = None
    ) -> bool:
        criteria = [Shop.name == name, Shop.business_id == business_id]
        if exclude_shop_id is not None:
            criteria.append(Shop.id != exclude_shop_id)
        return not self._scalar(select(exists().where(*criteria)), 'is_shop_name_unique')
