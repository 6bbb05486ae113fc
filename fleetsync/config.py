"""
Configuration management for FleetSync.

Loads settings from environment variables with sensible defaults.
All configuration is centralized here to avoid magic strings scattered
throughout the codebase.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class TelemetryConfig:
    """External telemetry API configuration."""
    api_url: str = os.getenv('TELEMETRY_API_URL', '')
    api_key: Optional[str] = os.getenv('TELEMETRY_API_KEY') or None
    api_key_param: str = os.getenv('TELEMETRY_API_KEY_PARAM', 'api-key')
    timeout_seconds: float = float(os.getenv('TELEMETRY_TIMEOUT_SECONDS', '30'))

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration."""
    url: str = os.getenv('DATABASE_URL', 'sqlite:///fleetsync.db')
    timeout_seconds: float = float(os.getenv('DATABASE_TIMEOUT_SECONDS', '10'))

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')


@dataclass(frozen=True)
class IngestionConfig:
    """Snapshot ingestion settings."""
    poll_interval: int = int(os.getenv('POLL_INTERVAL_SECONDS', '60'))


@dataclass(frozen=True)
class IconConfig:
    """Device icon storage."""
    directory: str = os.getenv('ICON_DIRECTORY', './icons')
    allowed_content_types: tuple = ('image/png', 'image/jpeg', 'image/jpg', 'image/gif')


@dataclass(frozen=True)
class MockConfig:
    """Mock telemetry source used for local development."""
    enabled: bool = _parse_bool(os.getenv('MOCK_MODE', '0'))
    seed_file: Optional[str] = os.getenv('MOCK_SEED_FILE') or None
    mutate_interval_seconds: float = float(os.getenv('MOCK_MUTATE_INTERVAL_SECONDS', '5'))
    mutate_chance: float = float(os.getenv('MOCK_MUTATE_CHANCE', '0.3'))
    mutate_count: int = int(os.getenv('MOCK_MUTATE_COUNT', '2'))


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    telemetry: TelemetryConfig
    database: DatabaseConfig
    ingestion: IngestionConfig
    icons: IconConfig
    mock: MockConfig

    # Flask settings
    secret_key: str
    debug: bool
    port: int


def load_config() -> AppConfig:
    """Load and validate all configuration."""
    return AppConfig(
        telemetry=TelemetryConfig(),
        database=DatabaseConfig(),
        ingestion=IngestionConfig(),
        icons=IconConfig(),
        mock=MockConfig(),
        secret_key=os.getenv('SECRET_KEY', 'dev-key-change-in-prod'),
        debug=os.getenv('FLASK_DEBUG', '0') == '1',
        port=int(os.getenv('PORT', '8080')),
    )


# Singleton instance
config = load_config()
