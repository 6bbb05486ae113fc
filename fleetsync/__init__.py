"""
FleetSync Backend Package.

Device telemetry sync service built with Flask and SQLAlchemy.

Modules:
    api/          REST endpoints for devices, settings, icons, preferences and status
    models/       SQLAlchemy ORM models (Device, DeviceSettings, UserPreferences)
    ingestion/    Telemetry snapshot pipeline with background polling, mock source
    services/     Lazy default creation and writes for settings and preferences
    changes.py    Change polling over the freshness index
    freshness.py  Thread-safe in-memory device_id -> updated_at index
    versioning.py Optimistic-concurrency writers
    store.py      Collection-level store operations
    config.py     Centralized configuration from environment variables
"""

__version__ = '1.0.0'
