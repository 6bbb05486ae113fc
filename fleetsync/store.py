"""
Document store for devices, device settings and user preferences.

Wraps the SQLAlchemy session factory behind the small set of operations
the sync engine needs: find-all, find-by-filter with projection,
insert-one, insert-if-absent, replace-one, delete-many. Conditional
version-gated updates live in fleetsync.versioning and use the same
session scope.

Every SQLAlchemy failure leaves this module as a StorageError.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional, Set

from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fleetsync.errors import StorageError
from fleetsync.models import Device, DeviceSettings, SessionLocal, UserPreferences
from fleetsync.timestamps import to_storage

logger = logging.getLogger(__name__)


class DocumentStore:
    """Collection-level operations over the relational store."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Transactional session scope.

        Commits on success, rolls back on any error, and re-raises
        database errors as StorageError.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f'Store operation failed: {e}') from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> None:
        """Raise StorageError unless the store answers a trivial query."""
        with self.session() as session:
            session.execute(text('SELECT 1'))

    @staticmethod
    def dialect_insert(session: Session, model):
        """INSERT supporting ON CONFLICT for the bound dialect."""
        if session.get_bind().dialect.name == 'postgresql':
            return postgresql_insert(model)
        return sqlite_insert(model)

    def insert_if_absent(self, session: Session, model, key: str, values: Dict[str, Any]) -> bool:
        """
        Insert a row unless one with the same natural key exists.

        Returns True when the row was inserted.
        """
        stmt = self.dialect_insert(session, model.__table__).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=[key])
        inserted_id = session.execute(stmt.returning(model.__table__.c.id)).scalar_one_or_none()
        return inserted_id is not None

    # -------------------------------------------------------------------------
    # Devices
    # -------------------------------------------------------------------------

    def device_ids(self) -> Set[str]:
        """All device_ids currently stored, in one query."""
        with self.session() as session:
            return set(session.scalars(select(Device.device_id)))

    def list_devices(self) -> List[Device]:
        with self.session() as session:
            return list(session.scalars(select(Device).order_by(Device.device_id)))

    def get_device(self, device_id: str) -> Optional[Device]:
        with self.session() as session:
            return session.scalars(
                select(Device).where(Device.device_id == device_id)
            ).one_or_none()

    def insert_device(self, device_id: str, updated_at: datetime, attributes: Dict[str, Any]) -> Device:
        with self.session() as session:
            device = Device(
                device_id=device_id,
                updated_at=to_storage(updated_at),
                version=0,
                attributes=attributes,
            )
            session.add(device)
            session.flush()
            return device

    def replace_device(self, device_id: str, updated_at: datetime, attributes: Dict[str, Any]) -> bool:
        """
        Overwrite the telemetry of an existing device.

        Not version-gated: the telemetry source is authoritative. The
        client write counter is left as is. Returns False when no row
        matched.
        """
        with self.session() as session:
            result = session.execute(
                update(Device)
                .where(Device.device_id == device_id)
                .values(updated_at=to_storage(updated_at), attributes=attributes)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def find_devices_updated_since(self, since: datetime) -> List[Dict[str, Any]]:
        """
        Devices whose updated_at is strictly after since.

        Returns the display projection only, never the full attribute bag.
        """
        with self.session() as session:
            devices = session.scalars(
                select(Device)
                .where(Device.updated_at > to_storage(since))
                .order_by(Device.updated_at)
            )
            return [device.to_update_dict() for device in devices]

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_settings(self, device_id: str) -> Optional[DeviceSettings]:
        with self.session() as session:
            return session.scalars(
                select(DeviceSettings).where(DeviceSettings.device_id == device_id)
            ).one_or_none()

    def has_settings(self, device_id: str) -> bool:
        with self.session() as session:
            found = session.scalar(
                select(DeviceSettings.id).where(DeviceSettings.device_id == device_id)
            )
            return found is not None

    def seed_settings(self, values: Dict[str, Any], overwrite: bool = False) -> bool:
        """
        Persist settings decoded from a telemetry snapshot.

        With overwrite the row is written unconditionally (first sighting
        of a device); otherwise only when the device has no settings yet.
        Returns True when a row was written.
        """
        with self.session() as session:
            if not overwrite:
                return self.insert_if_absent(session, DeviceSettings, 'device_id', values)

            stmt = self.dialect_insert(session, DeviceSettings.__table__).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=['device_id'],
                set_={
                    name: stmt.excluded[name]
                    for name in values
                    if name != 'device_id'
                },
            )
            session.execute(stmt)
            return True

    def icon_map(self) -> Dict[str, str]:
        """device_id -> icon URL for every device with settings."""
        with self.session() as session:
            rows = session.execute(select(DeviceSettings.device_id, DeviceSettings.icon_url))
            return {device_id: icon_url or '' for device_id, icon_url in rows}

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def clear_all(self) -> Dict[str, int]:
        """Delete every device, settings and preferences row."""
        with self.session() as session:
            counts = {}
            for name, model in (
                ('devices', Device),
                ('device_settings', DeviceSettings),
                ('user_preferences', UserPreferences),
            ):
                counts[name] = session.execute(delete(model)).rowcount

        logger.info(
            f'Cleared {counts["devices"]} devices, {counts["device_settings"]} settings, '
            f'{counts["user_preferences"]} preferences'
        )
        return counts
