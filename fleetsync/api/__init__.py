"""
API module for FleetSync.

Provides REST endpoints for:
- Device records, change polling and forced resync
- Device settings and icons
- User preferences
- System status
"""

from fleetsync.api.devices import devices_bp
from fleetsync.api.icons import icons_bp
from fleetsync.api.status import status_bp
from fleetsync.api.users import users_bp

__all__ = ['devices_bp', 'icons_bp', 'status_bp', 'users_bp']
