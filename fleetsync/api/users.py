"""
User preferences API endpoints.

Provides endpoints for:
- GET /api/users/<user_id>/preferences - Read, creating defaults on first read
- POST /api/users/<user_id>/preferences - Version-gated write
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from fleetsync.errors import ValidationError

logger = logging.getLogger(__name__)

users_bp = Blueprint('users', __name__, url_prefix='/api/users')


@users_bp.route('/<user_id>/preferences', methods=['GET'])
def get_preferences(user_id: str):
    """201 when the defaults were just created, 200 otherwise."""
    preferences, created = current_app.config['PREFERENCES_SERVICE'].get_or_create(user_id)
    return jsonify(preferences.to_dict()), 201 if created else 200


@users_bp.route('/<user_id>/preferences', methods=['POST'])
def save_preferences(user_id: str):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('JSON object body required')

    preferences = current_app.config['PREFERENCES_SERVICE'].save(user_id, data)
    return jsonify(preferences.to_dict())
