"""
Status API endpoint.

Provides:
- GET /api/status - Ingestion, freshness index and store health
"""

import logging
import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

from fleetsync.config import config
from fleetsync.errors import StorageError

logger = logging.getLogger(__name__)

status_bp = Blueprint('status', __name__, url_prefix='/api')


@status_bp.route('/status', methods=['GET'])
def get_system_status():
    """
    Get system health and status information.

    Returns:
    - Ingestion pipeline status
    - Freshness index size and last_checked
    - Store connectivity
    - Configuration info
    """
    start_time = time.perf_counter()

    pipeline = current_app.config.get('INGESTION_PIPELINE')
    pipeline_stats = pipeline.stats if pipeline else {'running': False}

    db_ok = True
    try:
        current_app.config['DOCUMENT_STORE'].ping()
    except StorageError as e:
        db_ok = False
        logger.error(f'Database health check failed: {e}')

    query_time_ms = (time.perf_counter() - start_time) * 1000

    return jsonify({
        'status': 'healthy' if (db_ok and pipeline_stats.get('running')) else 'degraded',
        'database': {
            'connected': db_ok,
            'type': 'sqlite' if current_app.config['DATABASE_URL'].startswith('sqlite') else 'postgresql',
        },
        'ingestion': pipeline_stats,
        'freshness': current_app.config['FRESHNESS_INDEX'].stats,
        'config': {
            'poll_interval': config.ingestion.poll_interval,
            'telemetry_configured': config.telemetry.is_configured,
            'mock_mode': current_app.config.get('MOCK_SOURCE') is not None,
        },
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'query_time_ms': round(query_time_ms, 2),
    })
