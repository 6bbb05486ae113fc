"""
External telemetry API client.

The source answers a single GET with the full current snapshot:

    {"result_list": [{"device_id": "abc", "updated_at": "2024-01-01T00:00:00Z",
                      "online": true, "latest_device_point": {...},
                      "settings": {...}, ...}, ...]}

Device entries are opaque attribute bags apart from three fields:
- device_id   - required, string
- updated_at  - required, RFC3339 timestamp
- settings    - optional, nested settings object
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from fleetsync.config import config
from fleetsync.errors import UpstreamUnavailableError, ValidationError
from fleetsync.timestamps import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class DeviceSnapshot:
    """
    One device entry from a snapshot.

    The settings sub-object is split off the attribute bag so it is never
    stored with the telemetry.
    """
    device_id: str
    updated_at: datetime
    attributes: Dict[str, Any] = field(default_factory=dict)
    settings: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, raw: Any) -> Optional['DeviceSnapshot']:
        """
        Parse a raw snapshot entry.

        Returns None if the entry is malformed or missing required fields.
        """
        if not isinstance(raw, dict):
            return None

        device_id = raw.get('device_id')
        if not device_id or not isinstance(device_id, str):
            return None

        try:
            updated_at = parse_timestamp(raw.get('updated_at'))
        except ValidationError:
            return None

        attributes = {
            key: value
            for key, value in raw.items()
            if key not in ('_id', 'device_id', 'updated_at', 'settings', 'version')
        }

        settings = raw.get('settings')
        if not isinstance(settings, dict):
            settings = None

        return cls(
            device_id=device_id,
            updated_at=updated_at,
            attributes=attributes,
            settings=settings,
        )


class TelemetryClient:
    """
    Client for the external telemetry API.

    Handles:
    - GET request for the full device snapshot
    - API key as a query parameter
    - Request timeout
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        api_key_param: str = 'api-key',
        timeout: float = 30,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.api_key_param = api_key_param
        self.timeout = timeout

        if not api_key:
            logger.warning('Telemetry client running without an API key')

        self.session = requests.Session()

    @classmethod
    def from_config(cls) -> 'TelemetryClient':
        """Create client from application configuration."""
        return cls(
            api_url=config.telemetry.api_url,
            api_key=config.telemetry.api_key,
            api_key_param=config.telemetry.api_key_param,
            timeout=config.telemetry.timeout_seconds,
        )

    def fetch_snapshot(self) -> List[Any]:
        """
        Fetch the raw result_list of the current snapshot.

        Entries are returned unparsed; see DeviceSnapshot.from_dict.

        Raises:
            UpstreamUnavailableError on network, HTTP or decode errors
        """
        params = {}
        if self.api_key:
            params[self.api_key_param] = self.api_key

        logger.debug(f'Fetching snapshot: {self.api_url}')

        try:
            response = self.session.get(
                self.api_url,
                params=params,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()

        except requests.exceptions.Timeout as e:
            raise UpstreamUnavailableError(f'Telemetry API timeout after {self.timeout}s') from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise UpstreamUnavailableError(f'Telemetry API error: {status}', status_code=status) from e
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailableError(f'Telemetry request failed: {e}') from e
        except ValueError as e:
            raise UpstreamUnavailableError(f'Telemetry API returned invalid JSON: {e}') from e

        if not isinstance(data, dict) or not isinstance(data.get('result_list'), list):
            raise UpstreamUnavailableError('Telemetry API response has no result_list array')

        devices = data['result_list']
        logger.info(f'Received {len(devices)} devices from telemetry API')

        return devices
