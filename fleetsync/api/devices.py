"""
Device API endpoints.

Provides endpoints for:
- GET /api/devices - List all device records
- GET /api/devices/check-updates - Poll for changes since lastUpdate
- PUT /api/devices/<id>?version=N - Version-gated patch of one device
- DELETE /api/devices/refresh - Forced resync from the telemetry source
- GET|PUT /api/devices/<device_id>/settings - Per-device settings
"""

import logging
import time

from flask import Blueprint, current_app, jsonify, request

from fleetsync.errors import ValidationError
from fleetsync.timestamps import parse_timestamp
from fleetsync.versioning import parse_version

logger = logging.getLogger(__name__)

devices_bp = Blueprint('devices', __name__, url_prefix='/api/devices')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('JSON object body required')
    return data


@devices_bp.route('', methods=['GET'])
def list_devices():
    """All device records, in the telemetry source's envelope."""
    store = current_app.config['DOCUMENT_STORE']
    devices = [device.to_dict() for device in store.list_devices()]
    return jsonify({'result_list': devices})


@devices_bp.route('/check-updates', methods=['GET'])
def check_updates():
    """
    Report what changed since the client's lastUpdate.

    Query parameters:
    - lastUpdate: RFC3339 timestamp (required), the value this endpoint
      returned on the client's previous poll

    updatedDevices is present only when needsUpdate is true. iconMap is
    always present.
    """
    start_time = time.perf_counter()

    last_update = request.args.get('lastUpdate')
    if not last_update:
        raise ValidationError('lastUpdate query parameter is required')

    check = current_app.config['CHANGE_QUERY'].check_for_updates(parse_timestamp(last_update))

    query_time_ms = (time.perf_counter() - start_time) * 1000
    logger.debug(
        f'check-updates since {last_update}: needsUpdate={check.needs_update}, '
        f'{len(check.updated_devices)} devices ({query_time_ms:.1f} ms)'
    )

    return jsonify(check.to_dict())


@devices_bp.route('/refresh', methods=['DELETE'])
def refresh_devices():
    """
    Forced resync.

    Clears devices, settings, preferences and the freshness index, then
    runs one ingestion pass. A failed pass still leaves the store cleared.
    """
    pipeline = current_app.config['INGESTION_PIPELINE']
    written = pipeline.resync()

    if written < 0:
        return jsonify({
            'error': 'Store cleared but the telemetry source could not be fetched',
        }), 502

    return jsonify({
        'message': 'Devices refreshed',
        'count': written,
    })


@devices_bp.route('/<store_id>', methods=['PUT'])
def update_device(store_id: str):
    """
    Patch one device record.

    The body is merged into the record's attributes. The version query
    parameter must equal the stored version.
    """
    try:
        key = int(store_id)
    except ValueError:
        raise ValidationError(f'Invalid device ID: {store_id}')

    version = request.args.get('version')
    if version is None:
        raise ValidationError('version query parameter is required')

    writer = current_app.config['DEVICE_WRITER']
    device = writer.patch(key, parse_version(version), _json_body())
    return jsonify(device.to_dict())


@devices_bp.route('/<device_id>/settings', methods=['GET'])
def get_settings(device_id: str):
    """Settings of one device, created with defaults on first read."""
    settings = current_app.config['SETTINGS_SERVICE'].get_or_create(device_id)
    return jsonify(settings.to_dict())


@devices_bp.route('/<device_id>/settings', methods=['PUT'])
def save_settings(device_id: str):
    """
    Replace the settings of one device.

    Body: the full settings shape including the version last read.
    Echoing back the stored updated_at at the current version is treated
    as a duplicate submission and answers the stored settings unchanged;
    send a newer updated_at, or omit it to have the server stamp the
    current time.
    """
    settings = current_app.config['SETTINGS_SERVICE'].save(device_id, _json_body())
    return jsonify(settings.to_dict())
