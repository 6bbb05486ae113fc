"""
Entity services.

Lazy default creation on read-miss and the version-gated write paths for
device settings and user preferences.
"""

from fleetsync.services.device_settings import SettingsService
from fleetsync.services.user_preferences import PreferencesService

__all__ = ['PreferencesService', 'SettingsService']
