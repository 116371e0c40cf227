"""
Customer preference repository: key/value preferences per customer with
category grouping and upsert-by-key semantics.
"""

import uuid
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload

import structlog

from pos_core.data.entities import CustomerPreference, utcnow
from pos_core.repositories.base import BaseRepository


logger = structlog.get_logger(__name__)


class CustomerPreferenceRepository(BaseRepository[CustomerPreference]):
    """Repository for CustomerPreference entities"""

    entity_class = CustomerPreference

    def _active_preferences(self):
        return self._active_query().where(CustomerPreference.is_active.is_(True))

    def get_by_customer_id(self, customer_id: uuid.UUID) -> List[CustomerPreference]:
        """Preferences of a customer ordered by category, then key."""
        statement = (
            self._active_preferences()
            .where(CustomerPreference.customer_id == customer_id)
            .order_by(CustomerPreference.category, CustomerPreference.key)
        )
        return self._fetch_all(statement, 'get_by_customer_id')

    def get_by_customer_id_and_key(self, customer_id: uuid.UUID, key: str) -> Optional[CustomerPreference]:
        statement = self._active_preferences().where(
            CustomerPreference.customer_id == customer_id,
            CustomerPreference.key == key,
        )
        return self._fetch_one(statement, 'get_by_customer_id_and_key')

    def get_by_category(self, category: str) -> List[CustomerPreference]:
        statement = (
            self._active_preferences()
            .where(CustomerPreference.category == category)
            .options(selectinload(CustomerPreference.customer))
            .order_by(CustomerPreference.customer_id, CustomerPreference.key)
        )
        return self._fetch_all(statement, 'get_by_category')

    def get_by_customer_id_and_category(self, customer_id: uuid.UUID, category: str) -> List[CustomerPreference]:
        statement = (
            self._active_preferences()
            .where(
                CustomerPreference.customer_id == customer_id,
                CustomerPreference.category == category,
            )
            .order_by(CustomerPreference.key)
        )
        return self._fetch_all(statement, 'get_by_customer_id_and_category')

    def _find_for_upsert(self, customer_id: uuid.UUID, key: str) -> Optional[CustomerPreference]:
        # Staged preferences are invisible to queries, look in the session first.
        for pending in self.session.new:
            if (isinstance(pending, CustomerPreference)
                    and pending.customer_id == customer_id and pending.key == key):
                return pending

        # Soft-deleted and inactive rows still occupy the (customer_id, key) slot.
        statement = select(CustomerPreference).where(
            CustomerPreference.customer_id == customer_id,
            CustomerPreference.key == key,
        )
        return self._fetch_one(statement, 'find_for_upsert')

    def set_preference(self, customer_id: uuid.UUID, key: str, value: str, category: str = "") -> bool:
        """
        Create or overwrite the preference ``key`` of a customer and commit it.

        An existing row for the key is reused even if it was removed earlier, so a
        customer never holds more than one preference per key.

        Raises:
            PersistenceError: If the customer does not exist or values exceed column limits
        """
        preference = self._find_for_upsert(customer_id, key)

        if preference is not None:
            preference.value = value
            preference.category = category
            preference.is_active = True
            preference.is_deleted = False
            preference.deleted_at = None
            preference.updated_at = utcnow()
            self._record('set_preference_update')
        else:
            preference = CustomerPreference(
                customer_id=customer_id,
                key=key,
                value=value,
                category=category,
            )
            self.add(preference)

        self.save_changes()

        logger.debug(
            "Customer preference set",
            customer_id=str(customer_id),
            key=key,
            category=category
        )
        return True

    def remove_preference(self, customer_id: uuid.UUID, key: str) -> bool:
        """Soft delete the preference ``key`` and commit. False when it does not exist."""
        preference = self.get_by_customer_id_and_key(customer_id, key)
        if preference is None:
            return False

        preference.mark_deleted()
        self.save_changes()
        return True

    def get_preferences_dictionary(
        self,
        customer_id: uuid.UUID,
        category: Optional[str] = None
    ) -> Dict[str, str]:
        """
        Preferences of a customer as a key -> value mapping, optionally limited to
        one category ("" is the category of uncategorized preferences). Each key
        appears once with its most recently set value.
        """
        statement = (
            self._active_preferences()
            .where(CustomerPreference.customer_id == customer_id)
            .order_by(CustomerPreference.updated_at)
        )
        if category is not None:
            statement = statement.where(CustomerPreference.category == category)

        return {
            preference.key: preference.value
            for preference in self._fetch_all(statement, 'get_preferences_dictionary')
        }
