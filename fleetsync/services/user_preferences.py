"""User preferences service."""

import logging
from typing import Any, Dict, Tuple

from fleetsync.errors import StorageError, ValidationError
from fleetsync.models import UserPreferences
from fleetsync.models.user_preferences import default_preferences, preferences_values
from fleetsync.store import DocumentStore
from fleetsync.versioning import PreferencesWriter, parse_version

logger = logging.getLogger(__name__)


class PreferencesService:
    """Read, create and write per-user preferences."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.writer = PreferencesWriter(store)

    def get_or_create(self, user_id: str) -> Tuple[UserPreferences, bool]:
        """
        Stored preferences, persisted with defaults on a miss.

        Returns (preferences, created).
        """
        if not user_id:
            raise ValidationError('User ID is required')

        preferences = self.writer.find(user_id)
        if preferences is not None:
            return preferences, False

        with self.store.session() as session:
            created = self.store.insert_if_absent(
                session, UserPreferences, 'user_id', default_preferences(user_id)
            )
        if created:
            logger.info(f'Created default preferences for user {user_id}')

        preferences = self.writer.find(user_id)
        if preferences is None:
            raise StorageError(f'Preferences for {user_id} vanished after creation')
        return preferences, created

    def save(self, user_id: str, payload: Dict[str, Any]) -> UserPreferences:
        if not isinstance(payload, dict):
            raise ValidationError('Preferences must be a JSON object')
        if 'version' not in payload:
            raise ValidationError('version is required')

        version = parse_version(payload['version'])
        return self.writer.write(user_id, version, preferences_values(payload))
