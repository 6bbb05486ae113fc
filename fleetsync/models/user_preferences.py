"""
UserPreferences model - dashboard preferences per user.
"""

from typing import Any, Dict

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fleetsync.errors import ValidationError
from fleetsync.models.base import Base

DEFAULT_DEVICE_LIST_WIDTH = 400
DEFAULT_UNIT = 'imperial'
UNITS = ('imperial', 'metric', 'original')


class UserPreferences(Base):
    """UI preferences keyed by user_id."""

    __tablename__ = 'user_preferences'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    device_list_width: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_DEVICE_LIST_WIDTH,
        comment='Width of the device list panel in pixels'
    )

    unit: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=DEFAULT_UNIT,
        comment='Unit system for display'
    )

    def __repr__(self) -> str:
        return f'<UserPreferences {self.user_id} v{self.version}>'

    def to_dict(self) -> dict:
        return {
            'userId': self.user_id,
            'version': self.version,
            'deviceListWidth': self.device_list_width,
            'unit': self.unit,
        }


def preferences_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Decode a preferences payload into column values, with defaults."""
    if not isinstance(payload, dict):
        raise ValidationError('Preferences must be a JSON object')

    width = payload.get('deviceListWidth', DEFAULT_DEVICE_LIST_WIDTH)
    if isinstance(width, bool) or not isinstance(width, int) or width <= 0:
        raise ValidationError('deviceListWidth must be a positive integer')

    unit = payload.get('unit', DEFAULT_UNIT)
    if unit not in UNITS:
        raise ValidationError(f'unit must be one of {", ".join(UNITS)}')

    return {'device_list_width': width, 'unit': unit}


def default_preferences(user_id: str) -> Dict[str, Any]:
    return {
        'user_id': user_id,
        'version': 1,
        'device_list_width': DEFAULT_DEVICE_LIST_WIDTH,
        'unit': DEFAULT_UNIT,
    }
