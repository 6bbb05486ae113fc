"""
Device settings service.

Settings are created lazily with defaults the first time a device's
settings are read, and every later change goes through the version-gated
SettingsWriter.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from fleetsync.errors import StorageError, ValidationError, VersionConflictError
from fleetsync.models import DeviceSettings
from fleetsync.models.device_settings import declared_updated_at, default_settings, settings_values
from fleetsync.store import DocumentStore
from fleetsync.timestamps import as_utc, utcnow
from fleetsync.versioning import SettingsWriter, parse_version

logger = logging.getLogger(__name__)


class SettingsService:
    """Read, create and write per-device settings."""

    # Icon updates race with client settings writes; retry on conflict
    ICON_WRITE_ATTEMPTS = 3

    def __init__(self, store: DocumentStore):
        self.store = store
        self.writer = SettingsWriter(store)

    def get_or_create(self, device_id: str) -> DeviceSettings:
        """Stored settings, created with defaults at version 1 on a miss."""
        if not device_id:
            raise ValidationError('Device ID is required')

        settings = self.store.get_settings(device_id)
        if settings is not None:
            return settings

        with self.store.session() as session:
            created = self.store.insert_if_absent(
                session, DeviceSettings, 'device_id', default_settings(device_id, utcnow())
            )
        if created:
            logger.info(f'Created default settings for device {device_id}')

        settings = self.store.get_settings(device_id)
        if settings is None:
            raise StorageError(f'Settings for {device_id} vanished after creation')
        return settings

    def save(self, device_id: str, payload: Dict[str, Any]) -> DeviceSettings:
        """
        Full-replacement write of a settings payload.

        The payload must carry the version the client last read.
        Missing fields take their defaults.

        At the stored version, a declared updated_at that is not strictly
        newer than the stored one makes the write a no-op returning the
        stored settings. Clients editing a fetched document must bump
        updated_at or omit it, in which case the current time is used.
        """
        if not isinstance(payload, dict):
            raise ValidationError('Settings must be a JSON object')
        if 'version' not in payload:
            raise ValidationError('version is required')

        version = parse_version(payload['version'])
        values = settings_values(payload)
        return self.writer.save(device_id, version, values, updated_at=declared_updated_at(payload))

    def set_icon_url(self, device_id: str, icon_url: str) -> DeviceSettings:
        """Change only iconUrl, keeping every other field as stored."""
        last_conflict: Optional[VersionConflictError] = None

        for attempt in range(1, self.ICON_WRITE_ATTEMPTS + 1):
            current = self.get_or_create(device_id)
            values = settings_values(current.to_dict())
            values['icon_url'] = icon_url
            # Must sort after the stored updated_at or the write is a no-op
            updated_at = max(utcnow(), as_utc(current.updated_at) + timedelta(microseconds=1))
            try:
                return self.writer.save(device_id, current.version, values, updated_at=updated_at)
            except VersionConflictError as e:
                last_conflict = e
                logger.info(f'Icon update for {device_id} conflicted (attempt {attempt}), retrying')

        raise last_conflict

    def icon_map(self) -> Dict[str, str]:
        return self.store.icon_map()
