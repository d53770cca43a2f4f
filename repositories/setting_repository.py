"""
SettingRepository - Data access layer for Setting model
"""

from typing import Optional
from repositories.base_repository import BaseRepository
from portal_database import Setting


class SettingRepository(BaseRepository):
    """Repository for Setting data access"""

    def __init__(self, session):
        super().__init__(session, Setting)

    def find_by_key(self, key: str) -> Optional[Setting]:
        return self.session.query(self.model_class)\
            .filter_by(key=key)\
            .first()

    def upsert(self, key: str, value: str) -> Setting:
        """
        Create or overwrite a setting value.

        Args:
            key: Setting key
            value: Serialized value

        Returns:
            The stored Setting
        """
        setting = self.find_by_key(key)
        if setting is None:
            return self.create(key=key, value=value)
        setting.value = value
        self.session.flush()
        return setting
