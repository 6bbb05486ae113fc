"""
Database models for FleetSync.

Three collections, each with a natural key:
1. devices            - keyed by device_id, telemetry from the source
2. device_settings    - keyed by device_id, user-tunable, versioned
3. user_preferences   - keyed by user_id, user-tunable, versioned
"""

from fleetsync.models.base import Base, engine, SessionLocal, init_db, make_engine, make_session_factory
from fleetsync.models.device import Device
from fleetsync.models.device_settings import DeviceSettings
from fleetsync.models.user_preferences import UserPreferences

__all__ = [
    'Base',
    'engine',
    'SessionLocal',
    'init_db',
    'make_engine',
    'make_session_factory',
    'Device',
    'DeviceSettings',
    'UserPreferences',
]
