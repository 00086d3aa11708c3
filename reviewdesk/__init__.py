"""
ReviewDesk - Review Aggregation and Notification Backend
Pulls reviews from Google, Yelp and Facebook, drafts replies, notifies owners
"""
from flask import Flask, jsonify
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
import os
import logging

__version__ = "1.4.0"

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Status code -> (error, message) for the JSON error bodies
HTTP_ERRORS = {
    400: ('Bad request', 'The request body or parameters are invalid'),
    401: ('Unauthorized', 'A valid API key is required'),
    403: ('Forbidden', 'This key cannot access that business'),
    404: ('Not found', 'The requested resource was not found'),
    405: ('Method not allowed', 'The method is not allowed for the requested URL'),
    500: ('Internal server error', 'An unexpected error occurred'),
}


def _error_response(code, message=None):
    error, default_message = HTTP_ERRORS.get(code, ('Error', ''))
    return jsonify({'error': error, 'message': message or default_message}), code


def register_error_handlers(app: Flask):
    """JSON bodies for every error, including pipeline failures that escape a route"""
    from reviewdesk.exceptions import IntegrationUnavailable, ReviewDeskError

    def make_handler(code):
        def handler(error):
            if code == 500:
                logger.error(f"Internal server error: {error}")
            description = getattr(error, 'description', None) if code == 400 else None
            return _error_response(code, description)
        return handler

    for code in HTTP_ERRORS:
        app.register_error_handler(code, make_handler(code))

    @app.errorhandler(ReviewDeskError)
    def pipeline_error(error):
        logger.error(f"Unhandled pipeline error: {error}")
        status = 409 if isinstance(error, IntegrationUnavailable) else 502
        return jsonify({'error': type(error).__name__, 'message': str(error)}), status

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Catch-all for unhandled exceptions"""
        if isinstance(error, HTTPException):
            return jsonify({'error': error.name, 'message': error.description}), error.code
        logger.error(f"Unhandled exception: {error}", exc_info=True)
        return _error_response(500)


def create_app(config_name=None):
    """Application factory pattern"""
    app = Flask(__name__)

    # Fix for running behind a reverse proxy (Render, Heroku, etc.)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    from reviewdesk.config import config, PipelineSettings
    # Instance, not class, so the DATABASE_URL property resolves
    app.config.from_object(config[config_name]())

    cors_origins = app.config.get('CORS_ORIGINS', '*')
    if cors_origins == '*' and config_name == 'production':
        logger.warning("CORS_ORIGINS is '*' in production; set the dashboard origin")
    CORS(app, origins=cors_origins)

    # Webhook and sync endpoints are hit by machines, so limits are per source IP
    app.limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=["5000 per day", "600 per hour"],
        storage_uri="memory://"
    )

    from reviewdesk.database import init_db
    init_db(app)

    # Pipeline components get their settings from here, never from os.environ
    app.extensions['pipeline_settings'] = PipelineSettings.from_config(app.config)

    from reviewdesk.routes import register_routes
    register_routes(app)
    register_error_handlers(app)

    @app.route('/health')
    def health():
        from reviewdesk.database import db
        from reviewdesk.services.scheduler_service import get_scheduler_status

        try:
            db.session.execute(db.text('SELECT 1'))
            db_status = 'connected'
        except Exception as e:
            db_status = f'error: {str(e)[:50]}'

        return {
            'status': 'healthy' if db_status == 'connected' else 'degraded',
            'version': __version__,
            'database': db_status,
            'scheduler': get_scheduler_status()['status']
        }

    @app.route('/api')
    def api_info():
        return {
            'name': 'ReviewDesk API',
            'version': __version__,
            'endpoints': {
                'reviews': '/api/reviews',
                'integrations': '/api/integrations',
                'notifications': '/api/notifications',
                'webhooks': '/api/webhooks'
            }
        }

    # One process per deployment should set ENABLE_SCHEDULER=1
    if not app.config.get('TESTING') and os.environ.get('ENABLE_SCHEDULER') == '1':
        try:
            from reviewdesk.services.scheduler_service import init_scheduler
            init_scheduler(app)
        except Exception as e:
            app.logger.warning(f"Could not start scheduler: {e}")

    if not app.config.get('TESTING'):
        if not app.config.get('ZAPIER_TOKEN'):
            app.logger.warning("ZAPIER_TOKEN is not set; only per-business webhook secrets will be accepted")
        if not app.config.get('INTERNAL_API_KEY'):
            app.logger.warning("INTERNAL_API_KEY is not set; /api/reviews/sync-all is disabled")

    return app
