"""
Device model - latest known telemetry of each tracked device.

One row per device_id. The fields the sync engine reasons about
(device_id, updated_at, version) are real columns; everything else the
telemetry source sends is kept verbatim in the attributes blob.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fleetsync.models.base import Base
from fleetsync.timestamps import format_timestamp

# Fields a client display needs when polling for changes
DISPLAY_FIELDS = (
    'display_name',
    'online',
    'active_state',
    'latest_device_point',
    'latest_accurate_device_point',
)

# Keys a client may never set through a device patch
RESERVED_FIELDS = ('_id', 'id', 'version', 'device_id', 'updated_at', 'settings')


class Device(Base):
    """Current state of a tracked device."""

    __tablename__ = 'devices'

    # Opaque store ID, exposed to clients as _id
    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    device_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        comment='Externally assigned device identifier'
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,  # Range queries for change polling
        comment='Source timestamp of this telemetry (UTC)'
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment='Incremented by every accepted client write'
    )

    attributes: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment='Opaque telemetry fields'
    )

    def __repr__(self) -> str:
        return f'<Device {self.device_id} v{self.version} @ {format_timestamp(self.updated_at)}>'

    def to_dict(self) -> dict:
        """Full record for API responses."""
        result = dict(self.attributes or {})
        result.update({
            '_id': str(self.id),
            'device_id': self.device_id,
            'updated_at': format_timestamp(self.updated_at),
            'version': self.version,
        })
        return result

    def to_update_dict(self) -> dict:
        """Display projection returned by change polling."""
        attributes = self.attributes or {}
        result = {
            '_id': str(self.id),
            'device_id': self.device_id,
            'updated_at': format_timestamp(self.updated_at),
        }
        for field in DISPLAY_FIELDS:
            if field in attributes:
                result[field] = attributes[field]
        return result
