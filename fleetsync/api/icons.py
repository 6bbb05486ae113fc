"""
Device icon endpoints.

Provides endpoints for:
- POST /api/devices/<device_id>/icon - Upload (file), set a default
  (defaultIcon form field) or remove (?remove=true) a device icon
- GET /api/devices/<device_id>/icon - The uploaded icon, or an empty body
- GET /icons/<filename> - Static icon files

Uploaded icons are stored as <device_id>.png in the icon directory and
their URL is written to the device's settings (iconUrl).
"""

import logging
import os
from pathlib import Path

from flask import Blueprint, current_app, jsonify, request, send_from_directory
from werkzeug.utils import secure_filename

from fleetsync.config import config
from fleetsync.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

icons_bp = Blueprint('icons', __name__)


def _icon_directory() -> Path:
    return Path(current_app.config['ICON_DIRECTORY'])


def _icon_filename(device_id: str) -> str:
    filename = secure_filename(f'{device_id}.png')
    if not filename:
        raise ValidationError(f'Invalid device ID: {device_id}')
    return filename


def _require_device(device_id: str) -> None:
    if current_app.config['DOCUMENT_STORE'].get_device(device_id) is None:
        raise NotFoundError(f'Device {device_id} not found')


def _remove_icon(device_id: str):
    path = _icon_directory() / _icon_filename(device_id)
    logger.info(f'Removing icon at {path}')
    path.unlink(missing_ok=True)

    settings = current_app.config['SETTINGS_SERVICE'].set_icon_url(device_id, '')
    return jsonify({
        'message': 'Icon removed successfully',
        'version': settings.version,
    })


def _set_default_icon(device_id: str, icon_url: str):
    settings = current_app.config['SETTINGS_SERVICE'].set_icon_url(device_id, icon_url)
    return jsonify({
        'iconUrl': settings.icon_url,
        'message': 'Default icon set successfully',
        'version': settings.version,
    })


def _upload_icon(device_id: str):
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise ValidationError('No icon file uploaded')

    if upload.mimetype not in config.icons.allowed_content_types:
        raise ValidationError(f'Invalid image content type: {upload.mimetype}')

    directory = _icon_directory()
    directory.mkdir(parents=True, exist_ok=True)

    filename = _icon_filename(device_id)
    target = directory / filename
    temp = directory / f'{filename}.tmp'

    try:
        upload.save(temp)
        os.replace(temp, target)
    except OSError:
        temp.unlink(missing_ok=True)
        raise

    icon_url = f'{request.host_url}icons/{filename}'
    settings = current_app.config['SETTINGS_SERVICE'].set_icon_url(device_id, icon_url)
    logger.info(f'Stored icon for device {device_id} at {target}')

    return jsonify({
        'iconUrl': settings.icon_url,
        'message': 'Icon uploaded successfully',
        'version': settings.version,
    })


@icons_bp.route('/api/devices/<device_id>/icon', methods=['POST'])
def upload_icon(device_id: str):
    """Upload, set or remove the icon of one device."""
    _require_device(device_id)

    if request.args.get('remove', '').lower() == 'true':
        return _remove_icon(device_id)

    default_icon = request.form.get('defaultIcon')
    if default_icon:
        return _set_default_icon(device_id, default_icon)

    return _upload_icon(device_id)


@icons_bp.route('/api/devices/<device_id>/icon', methods=['GET'])
def get_icon(device_id: str):
    """The uploaded icon file, or 200 with an empty body if there is none."""
    filename = _icon_filename(device_id)
    if not (_icon_directory() / filename).is_file():
        return '', 200
    return send_from_directory(_icon_directory().resolve(), filename)


@icons_bp.route('/icons/<path:filename>', methods=['GET'])
def serve_icon(filename: str):
    return send_from_directory(_icon_directory().resolve(), filename)
