"""
Optimistic-concurrency writes.

Every client write declares the version it believes is current. The
write is one conditional statement:

    UPDATE <collection>
       SET <values>, version = version + 1
     WHERE <key> = K AND version = V
    RETURNING *

If no row matched, a follow-up read by key alone tells the two causes
apart: the entity does not exist (NotFoundError), or it exists at another
version (VersionConflictError, carrying the current entity).

Device patches merge into the stored attribute bag, which ingestion
replaces without bumping the version. Their update is also pinned to the
updated_at that was merged against, and re-read and retried if ingestion
got there first.

Entity lifecycle:
    Absent      --insert(v=1)-->        Present(1)
    Present(v)  --write(v)-->           Present(v+1)
    Present(v)  --write(v' != v)-->     Present(v) + VersionConflictError
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update

from fleetsync.errors import NotFoundError, ValidationError, VersionConflictError
from fleetsync.models import Device, DeviceSettings, UserPreferences
from fleetsync.models.device import RESERVED_FIELDS
from fleetsync.store import DocumentStore
from fleetsync.timestamps import as_utc, to_storage, utcnow

logger = logging.getLogger(__name__)


def parse_version(value: Any) -> int:
    """Validate a client-declared version."""
    if isinstance(value, bool):
        raise ValidationError('version must be a non-negative integer')
    if isinstance(value, str):
        try:
            value = int(value)
        except ValueError:
            raise ValidationError('version must be a non-negative integer')
    if not isinstance(value, int) or value < 0:
        raise ValidationError('version must be a non-negative integer')
    return value


class VersionedWriter:
    """
    Version-gated writer for one entity kind.

    Subclasses set model, key (the natural key column name) and whether
    a declared version of 0 means "create me".
    """

    model = None
    key = None
    entity_name = 'entity'

    # version == 0 means "I have no version yet, create me at version 1"
    create_on_first_write = True

    # Only guarded writes retry; a plain version miss fails at once
    WRITE_ATTEMPTS = 3

    def __init__(self, store: DocumentStore):
        self.store = store

    @property
    def key_column(self):
        return getattr(self.model, self.key)

    def find(self, key_value: Any):
        """Read the entity by natural key alone."""
        with self.store.session() as session:
            return session.scalars(
                select(self.model).where(self.key_column == key_value)
            ).one_or_none()

    def write(self, key_value: Any, version: int, values: Dict[str, Any]):
        """
        Apply values if version is the stored version.

        Returns the updated entity at version + 1, or the stored entity
        unchanged when the write is a no-op.

        Raises:
            NotFoundError if the entity does not exist
            VersionConflictError if it exists at another version
        """
        if version == 0 and self.create_on_first_write:
            return self._create(key_value, values)

        for attempt in range(1, self.WRITE_ATTEMPTS + 1):
            current = self.find(key_value)
            if current is not None and self.is_noop(current, version, values):
                logger.debug(f'{self.entity_name} {key_value} v{version}: no change, write skipped')
                return current

            prepared = self.prepare(current, values)
            guards = self.guards(current)
            with self.store.session() as session:
                updated = session.scalars(
                    update(self.model)
                    .where(self.key_column == key_value, self.model.version == version, *guards)
                    .values(**prepared, version=self.model.version + 1)
                    .returning(self.model)
                ).one_or_none()

            if updated is not None:
                logger.info(f'Updated {self.entity_name} {key_value} to v{updated.version}')
                return updated

            if not guards:
                break

            # Version still matches but the row changed under the merge; re-read
            latest = self.find(key_value)
            if latest is None or latest.version != version:
                break
            logger.info(
                f'{self.entity_name} {key_value} changed during write '
                f'(attempt {attempt}), retrying'
            )

        self._raise_unmatched(key_value, version)

    def _create(self, key_value: Any, values: Dict[str, Any]):
        row = dict(self.create_values(key_value, values))
        row.update({self.key: key_value, 'version': 1})

        with self.store.session() as session:
            inserted = self.store.insert_if_absent(session, self.model, self.key, row)

        if inserted:
            logger.info(f'Created {self.entity_name} {key_value} at v1')
            return self.find(key_value)

        # Someone already created it: a version-0 write is stale by definition
        self._raise_unmatched(key_value, 0)

    def _raise_unmatched(self, key_value: Any, version: int) -> None:
        current = self.find(key_value)
        if current is None:
            raise NotFoundError(f'{self.entity_name} {key_value} not found')

        logger.info(
            f'Version conflict on {self.entity_name} {key_value}: '
            f'declared v{version}, stored v{current.version}'
        )
        raise VersionConflictError(
            f'Outdated {self.entity_name} version {version}, current is {current.version}',
            current=current,
        )

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    def is_noop(self, current, version: int, values: Dict[str, Any]) -> bool:
        return False

    def prepare(self, current, values: Dict[str, Any]) -> Dict[str, Any]:
        """Column values for the conditional update."""
        return values

    def guards(self, current) -> List[Any]:
        """
        Extra WHERE clauses pinning the row that prepare() read.

        Needed when prepare() derives values from current and the row can
        change without a version bump.
        """
        return []

    def create_values(self, key_value: Any, values: Dict[str, Any]) -> Dict[str, Any]:
        """Column values for a first write at version 1."""
        return values


class DeviceWriter(VersionedWriter):
    """
    Client patches to device records, addressed by store ID.

    Records start at version 0 when first ingested, so a client's first
    patch declares 0. The patch is merged into the attribute bag.
    """

    model = Device
    key = 'id'
    entity_name = 'device'
    create_on_first_write = False

    def patch(self, store_id: int, version: int, patch: Dict[str, Any]) -> Device:
        if not isinstance(patch, dict):
            raise ValidationError('Device update must be a JSON object')
        attributes = {k: v for k, v in patch.items() if k not in RESERVED_FIELDS}
        return self.write(store_id, version, {'attributes': attributes})

    def prepare(self, current, values: Dict[str, Any]) -> Dict[str, Any]:
        if current is None:
            return values
        merged = dict(current.attributes or {})
        merged.update(values['attributes'])
        return {'attributes': merged}

    def guards(self, current) -> List[Any]:
        # Ingestion replaces attributes without bumping the version
        if current is None:
            return []
        return [Device.updated_at == current.updated_at]


class SettingsWriter(VersionedWriter):
    """
    Full-replacement writes to device settings.

    A write that declares the stored version but an updated_at that is
    not strictly newer than the stored one is a duplicate or out-of-order
    submission: the stored settings are returned unchanged.
    """

    model = DeviceSettings
    key = 'device_id'
    entity_name = 'settings'

    def save(self, device_id: str, version: int, values: Dict[str, Any],
             updated_at: Optional[datetime] = None) -> DeviceSettings:
        values = dict(values)
        values['updated_at'] = to_storage(updated_at or utcnow())
        return self.write(device_id, version, values)

    def is_noop(self, current, version: int, values: Dict[str, Any]) -> bool:
        if version != current.version:
            return False
        return as_utc(values['updated_at']) <= as_utc(current.updated_at)


class PreferencesWriter(VersionedWriter):
    """Writes to user preferences."""

    model = UserPreferences
    key = 'user_id'
    entity_name = 'preferences'
