"""
DeviceSettings model - user-tunable thresholds per device.

Keyed 1:1 by device_id and guarded by an optimistic version counter.
Measures (speeds, distances, durations) are stored as small JSON objects
of the form {"value": 350, "unit": "m", "display": "350 m"}.
"""

import copy
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fleetsync.errors import ValidationError
from fleetsync.models.base import Base
from fleetsync.timestamps import format_timestamp, parse_timestamp, to_storage


def _measure(value: float, unit: str, display: str) -> Dict[str, Any]:
    return {'value': value, 'unit': unit, 'display': display}


MEASURE_FIELDS = (
    'begin_moving_speed',
    'begin_stopped_speed',
    'max_drift_distance',
    'drive_timeout',
    'stop_timeout',
    'offline_timeout',
    'history_calc_duration',
    'harsh_event_min_speed',
)

DEFAULT_SETTINGS: Dict[str, Any] = {
    'icon_url': '',
    'begin_moving_speed': _measure(0, 'mph', '0 mph'),
    'begin_stopped_speed': _measure(0, 'mph', '0 mph'),
    'max_drift_distance': _measure(350, 'm', '350 m'),
    'min_num_satellites': 8,
    'ignore_unset_min_num_sats': True,
    'max_hdop': 3.5,
    'drive_timeout': _measure(1800, 's', '30m'),
    'stop_timeout': _measure(14400, 's', '4h'),
    'offline_timeout': _measure(3900, 's', '1h 5m'),
    'history_calc_duration': _measure(86400, 's', '24h'),
    'fuel_consumption': {
        'calculation_method': 'fuel_sensor',
        'measurement': 'mpg',
        'fuel_type': '',
        'fuel_cost': 0,
        'fuel_economy': 0,
    },
    'initial_device_point_delete_cutoff_time': '2024-06-21T17:45:09.284403Z',
    'engine_hours_counter_config': 'best',
    'use_v3_engine_hours': True,
    'history_retention_days': 1095,
    'harsh_event_min_speed': _measure(0, 'mph', '0 mph'),
}


class DeviceSettings(Base):
    """Per-device thresholds, lazily created with defaults."""

    __tablename__ = 'device_settings'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    device_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    icon_url: Mapped[str] = mapped_column(String(512), nullable=False, default='')

    begin_moving_speed: Mapped[dict] = mapped_column(JSON, nullable=False)
    begin_stopped_speed: Mapped[dict] = mapped_column(JSON, nullable=False)
    max_drift_distance: Mapped[dict] = mapped_column(JSON, nullable=False)

    # GPS quality gates
    min_num_satellites: Mapped[int] = mapped_column(Integer, nullable=False)
    ignore_unset_min_num_sats: Mapped[bool] = mapped_column(Boolean, nullable=False)
    max_hdop: Mapped[float] = mapped_column(Float, nullable=False)

    drive_timeout: Mapped[dict] = mapped_column(JSON, nullable=False)
    stop_timeout: Mapped[dict] = mapped_column(JSON, nullable=False)
    offline_timeout: Mapped[dict] = mapped_column(JSON, nullable=False)
    history_calc_duration: Mapped[dict] = mapped_column(JSON, nullable=False)

    fuel_consumption: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Retention
    initial_device_point_delete_cutoff_time: Mapped[str] = mapped_column(String(64), nullable=False)
    engine_hours_counter_config: Mapped[str] = mapped_column(String(32), nullable=False)
    use_v3_engine_hours: Mapped[bool] = mapped_column(Boolean, nullable=False)
    history_retention_days: Mapped[int] = mapped_column(Integer, nullable=False)

    harsh_event_min_speed: Mapped[dict] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f'<DeviceSettings {self.device_id} v{self.version}>'

    def to_dict(self) -> dict:
        result = {
            'device_id': self.device_id,
            'iconUrl': self.icon_url,
            'version': self.version,
            'updated_at': format_timestamp(self.updated_at),
        }
        for field in DEFAULT_SETTINGS:
            if field != 'icon_url':
                result[field] = getattr(self, field)
        return result


# -----------------------------------------------------------------------------
# Payload decoding
# -----------------------------------------------------------------------------

def _require_number(field: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f'{field} must be a number')
    return value


def _decode_measure(field: str, value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError(f'{field} must be an object with value/unit/display')
    default = DEFAULT_SETTINGS[field]
    return {
        'value': _require_number(f'{field}.value', value.get('value', default['value'])),
        'unit': str(value.get('unit', default['unit'])),
        'display': str(value.get('display', default['display'])),
    }


def _decode_fuel(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError('fuel_consumption must be an object')
    fuel = copy.deepcopy(DEFAULT_SETTINGS['fuel_consumption'])
    for key in ('calculation_method', 'measurement', 'fuel_type'):
        if key in value:
            fuel[key] = str(value[key])
    for key in ('fuel_cost', 'fuel_economy'):
        if key in value:
            fuel[key] = _require_number(f'fuel_consumption.{key}', value[key])
    return fuel


def settings_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode a settings payload into column values.

    Fields missing from the payload take their defaults; fields present
    with the wrong shape raise ValidationError. version, device_id and
    updated_at are not part of the result.
    """
    if not isinstance(payload, dict):
        raise ValidationError('Settings must be a JSON object')

    values = copy.deepcopy(DEFAULT_SETTINGS)

    icon_url = payload.get('iconUrl', payload.get('icon_url'))
    if icon_url is not None:
        if not isinstance(icon_url, str):
            raise ValidationError('iconUrl must be a string')
        values['icon_url'] = icon_url

    for field in MEASURE_FIELDS:
        if field in payload:
            values[field] = _decode_measure(field, payload[field])

    if 'fuel_consumption' in payload:
        values['fuel_consumption'] = _decode_fuel(payload['fuel_consumption'])

    for field in ('min_num_satellites', 'history_retention_days'):
        if field in payload:
            value = payload[field]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f'{field} must be an integer')
            values[field] = value

    if 'max_hdop' in payload:
        values['max_hdop'] = float(_require_number('max_hdop', payload['max_hdop']))

    for field in ('ignore_unset_min_num_sats', 'use_v3_engine_hours'):
        if field in payload:
            if not isinstance(payload[field], bool):
                raise ValidationError(f'{field} must be a boolean')
            values[field] = payload[field]

    for field in ('initial_device_point_delete_cutoff_time', 'engine_hours_counter_config'):
        if field in payload:
            if not isinstance(payload[field], str):
                raise ValidationError(f'{field} must be a string')
            values[field] = payload[field]

    return values


def default_settings(device_id: str, updated_at: datetime) -> Dict[str, Any]:
    """Column values for a freshly created settings row."""
    values = copy.deepcopy(DEFAULT_SETTINGS)
    values.update({
        'device_id': device_id,
        'version': 1,
        'updated_at': to_storage(updated_at),
    })
    return values


def declared_updated_at(payload: Dict[str, Any]) -> Optional[datetime]:
    """The client's updated_at, or None when it sent none."""
    value = payload.get('updated_at')
    if value in (None, ''):
        return None
    return parse_timestamp(value)
