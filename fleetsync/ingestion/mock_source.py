"""
Mock telemetry source for local development.

Holds a snapshot seeded from a result_list JSON file and randomly nudges
a few devices on an interval: online flag, position, speed and
updated_at. Exposes the same fetch_snapshot() as TelemetryClient, so the
pipeline can poll it in-process, and serves it over HTTP at
/mock/v1/devices for external consumers.
"""

import copy
import json
import logging
import random
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from flask import Blueprint, current_app, jsonify

from fleetsync.errors import UpstreamUnavailableError
from fleetsync.timestamps import format_timestamp, utcnow

logger = logging.getLogger(__name__)

mock_bp = Blueprint('mock', __name__)


def _nudge(coordinate: float) -> float:
    """Move a coordinate by 0.01 to 0.05 degrees in a random direction."""
    change = random.uniform(0.01, 0.05)
    return coordinate + change if random.random() < 0.5 else coordinate - change


class MockTelemetrySource:
    """Thread-safe, mutating stand-in for the telemetry API."""

    def __init__(self, devices: Optional[List[Dict[str, Any]]] = None):
        self._lock = threading.Lock()
        self._devices: List[Dict[str, Any]] = copy.deepcopy(devices or [])
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @classmethod
    def from_file(cls, path: str) -> 'MockTelemetrySource':
        """
        Load a seed snapshot: either {"result_list": [...]} or a bare list.

        Raises:
            FileNotFoundError, ValueError on an unreadable seed
        """
        with open(Path(path), encoding='utf-8') as f:
            data = json.load(f)

        devices = data.get('result_list') if isinstance(data, dict) else data
        if not isinstance(devices, list) or not devices:
            raise ValueError(f'No devices found in mock seed file {path}')

        logger.info(f'Initialized {len(devices)} mock devices from {path}')
        return cls(devices)

    def fetch_snapshot(self) -> List[Any]:
        """Copy of the current mock snapshot."""
        with self._lock:
            if not self._devices:
                raise UpstreamUnavailableError('Mock source has no devices')
            return copy.deepcopy(self._devices)

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def mutate(self, count: int) -> List[str]:
        """
        Mutate up to count randomly chosen devices.

        Returns the device_ids that were changed.
        """
        mutated = []
        with self._lock:
            if not self._devices:
                return mutated

            for _ in range(min(count, len(self._devices))):
                device = random.choice(self._devices)

                device_id = device.get('device_id')
                if not isinstance(device_id, str):
                    logger.warning('Mock device without string device_id, skipping mutation')
                    continue

                if 'online' in device:
                    device['online'] = random.random() < 0.5

                point = device.get('latest_device_point')
                if isinstance(point, dict):
                    for axis in ('lat', 'lng'):
                        if isinstance(point.get(axis), (int, float)):
                            point[axis] = _nudge(point[axis])

                    detail = point.get('device_point_detail')
                    speed = detail.get('speed') if isinstance(detail, dict) else None
                    if isinstance(speed, dict):
                        speed['value'] = random.randint(0, 50)
                        speed['display'] = f'{speed["value"]} km/h'

                if 'updated_at' in device:
                    device['updated_at'] = format_timestamp(utcnow().replace(microsecond=0))

                mutated.append(device_id)

        for device_id in mutated:
            logger.debug(f'Mutated mock device {device_id}')
        return mutated

    def _run(self, interval: float, chance: float, count: int) -> None:
        while not self._stop_event.wait(interval):
            if random.random() < chance:
                changed = self.mutate(count)
                logger.info(f'Mock devices mutated: {", ".join(changed)}')

    def start_background(self, interval: float, chance: float, count: int) -> None:
        """Start the mutation loop in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning('Mock mutation already running')
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(interval, chance, count),
            name='mock-mutator',
            daemon=True,
        )
        self._thread.start()
        logger.info(f'Mock mutation started (interval={interval}s, chance={chance}, count={count})')

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)


@mock_bp.route('/mock/v1/devices', methods=['GET'])
def mock_devices():
    """Serve the mock snapshot in the telemetry API's shape."""
    source: MockTelemetrySource = current_app.config['MOCK_SOURCE']
    return jsonify({'result_list': source.fetch_snapshot()})
