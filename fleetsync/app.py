"""
FleetSync Flask Application.

Main entry point for the web application. Initializes:
- Database schema and connectivity check
- Freshness index and ingestion pipeline
- Optional mock telemetry source
- API routes and error handlers

Usage:
    python -m fleetsync.app

Or with gunicorn:
    gunicorn "fleetsync.app:create_app()"
"""

import logging
from typing import Any, Optional

from flask import Flask, request
from flask_cors import CORS

from fleetsync.api import devices_bp, icons_bp, status_bp, users_bp
from fleetsync.changes import ChangeQuery
from fleetsync.config import config
from fleetsync.errors import (
    NotFoundError,
    StorageError,
    UpstreamUnavailableError,
    ValidationError,
    VersionConflictError,
)
from fleetsync.freshness import FreshnessIndex
from fleetsync.ingestion import IngestionPipeline, MockTelemetrySource, TelemetryClient
from fleetsync.ingestion.mock_source import mock_bp
from fleetsync.models import SessionLocal, init_db, make_engine, make_session_factory
from fleetsync.models import engine as default_engine
from fleetsync.services import PreferencesService, SettingsService
from fleetsync.store import DocumentStore
from fleetsync.versioning import DeviceWriter

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)
logger = logging.getLogger(__name__)


def _make_client(app: Flask) -> Any:
    """Telemetry source from configuration: the mock in MOCK_MODE, else the real API."""
    if config.mock.enabled:
        if not config.mock.seed_file:
            raise RuntimeError('MOCK_MODE requires MOCK_SEED_FILE')
        source = MockTelemetrySource.from_file(config.mock.seed_file)
        app.config['MOCK_SOURCE'] = source
        app.register_blueprint(mock_bp)
        logger.info('Using mock telemetry source')
        return source

    if not config.telemetry.is_configured:
        logger.warning('TELEMETRY_API_URL is not set; every ingestion tick will fail')
    return TelemetryClient.from_config()


def create_app(
    start_ingestion: bool = True,
    database_url: Optional[str] = None,
    client: Optional[Any] = None,
    icon_directory: Optional[str] = None,
) -> Flask:
    """
    Application factory for Flask.

    Args:
        start_ingestion: Whether to start the background ingestion pipeline.
                        Set to False for testing.
        database_url: Overrides DATABASE_URL.
        client: Telemetry source with fetch_snapshot(); built from
                configuration if None.
        icon_directory: Overrides ICON_DIRECTORY.

    Returns:
        Configured Flask application instance.

    Raises:
        StorageError if the store cannot be reached at startup.
    """
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = config.secret_key
    app.config['DATABASE_URL'] = database_url or config.database.url
    app.config['ICON_DIRECTORY'] = icon_directory or config.icons.directory
    app.config['MOCK_SOURCE'] = None

    # Enable CORS for API endpoints
    CORS(app, resources={r'/api/*': {'origins': '*'}})

    # Initialize database
    logger.info('Initializing database...')
    if database_url:
        engine = make_engine(database_url)
        session_factory = make_session_factory(engine)
    else:
        engine = default_engine
        session_factory = SessionLocal
    init_db(bind=engine)

    store = DocumentStore(session_factory)
    try:
        store.ping()
    except StorageError as e:
        logger.critical(f'Database unreachable at startup: {e}')
        raise

    # Core components
    freshness = FreshnessIndex()
    if client is None:
        client = _make_client(app)
    pipeline = IngestionPipeline(client=client, store=store, freshness=freshness)

    app.config['DOCUMENT_STORE'] = store
    app.config['FRESHNESS_INDEX'] = freshness
    app.config['INGESTION_PIPELINE'] = pipeline
    app.config['CHANGE_QUERY'] = ChangeQuery(store, freshness)
    app.config['DEVICE_WRITER'] = DeviceWriter(store)
    app.config['SETTINGS_SERVICE'] = SettingsService(store)
    app.config['PREFERENCES_SERVICE'] = PreferencesService(store)

    # Register API blueprints
    app.register_blueprint(devices_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(icons_bp)
    app.register_blueprint(status_bp)

    if start_ingestion:
        pipeline.start_background()
        mock_source = app.config['MOCK_SOURCE']
        if mock_source is not None:
            mock_source.start_background(
                config.mock.mutate_interval_seconds,
                config.mock.mutate_chance,
                config.mock.mutate_count,
            )
        logger.info(f'Ingestion started with interval {config.ingestion.poll_interval}s')

    @app.route('/health')
    def health():
        """Simple health check endpoint."""
        return {'status': 'ok'}

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.errorhandler(ValidationError)
    def bad_request(e):
        return {'error': str(e)}, 400

    @app.errorhandler(NotFoundError)
    def entity_not_found(e):
        return {'error': str(e)}, 404

    @app.errorhandler(VersionConflictError)
    def version_conflict(e):
        return {'error': str(e), 'current': e.current.to_dict()}, 409

    @app.errorhandler(UpstreamUnavailableError)
    def upstream_unavailable(e):
        logger.error(f'Upstream unavailable on {request.method} {request.path}: {e}')
        return {'error': 'Telemetry source unavailable'}, 502

    @app.errorhandler(StorageError)
    def storage_error(e):
        logger.error(f'Storage error on {request.method} {request.path}: {e}')
        return {'error': 'Internal server error'}, 500

    @app.errorhandler(404)
    def not_found(e):
        return {'error': 'Not found'}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f'Server error: {e}')
        return {'error': 'Internal server error'}, 500

    return app


def run_development_server():
    """Run the development server."""
    app = create_app()

    logger.info(f'Starting FleetSync on http://localhost:{config.port}')
    logger.info(f'Status: http://localhost:{config.port}/api/status')

    app.run(
        host='0.0.0.0',
        port=config.port,
        debug=config.debug,
        use_reloader=False,  # Disable reloader to prevent duplicate pipeline threads
    )


if __name__ == '__main__':
    run_development_server()
