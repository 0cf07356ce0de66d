"""
Flask Application Factory for Xibo Portal.

This module provides the create_app() factory function that creates and
configures the Flask application. It initializes:
- Flask-JWT-Extended for authentication
- The shared Xibo API client and sub-resource thread pool
- Blueprint registration
- Error handlers
- Logging configuration

Usage:
    # Development
    python -m xibo_portal.app

    # Production
    gunicorn -w 4 -b 0.0.0.0:5004 'xibo_portal.wsgi:application'
"""

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Optional

from flask import Flask, jsonify
from flask_jwt_extended import JWTManager

from xibo_portal.config import get_config
from xibo_portal.engine.errors import (
    CheckoutConflict,
    CheckoutFailed,
    EditTargetNotFound,
    EngineError,
    LayoutNotFound,
    MutationError,
    StateTransitionError,
)
from xibo_portal.services import (
    UserContextError,
    XiboAuthenticationError,
    XiboClientError,
    XiboConnectionError,
    XiboTimeoutError,
)
from xibo_portal.services.xibo_client import XiboClient


# Initialize extensions outside of create_app for import access
jwt = JWTManager()


def create_app(config_name: Optional[str] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name ('development', 'testing', 'production').
                    If None, reads from FLASK_ENV environment variable.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    # Load configuration
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)

    # Store config class for reference
    app.config['CONFIG_CLASS'] = config_class

    # Configure JWT token expiration from config
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(
        seconds=app.config.get('JWT_ACCESS_TOKEN_EXPIRES', 3600)
    )

    # Initialize extensions
    jwt.init_app(app)

    # Shared upstream client and resolver pool
    app.extensions['xibo_client'] = XiboClient.from_config(app.config)
    app.extensions['resolver_executor'] = ThreadPoolExecutor(
        max_workers=app.config['RESOLVER_MAX_WORKERS'],
        thread_name_prefix='resolver',
    )

    # Configure logging
    _configure_logging(app)

    # Register blueprints
    _register_blueprints(app)

    # Register error handlers
    _register_error_handlers(app)

    # Register JWT error handlers
    _register_jwt_handlers(app)

    # Register health check endpoint
    @app.route('/health')
    @app.route('/api/health')
    def health_check():
        """Health check endpoint for monitoring."""
        return jsonify({
            'status': 'healthy',
            'service': 'xibo_portal',
            'upstream': app.config.get('XIBO_API_URL'),
            'timestamp': datetime.now(timezone.utc).isoformat(),
        })

    return app


def _configure_logging(app: Flask) -> None:
    """
    Configure application logging.

    Logs go to stdout for container logging. Package loggers share the
    handler so engine and service modules log alongside the app.

    Args:
        app: Flask application instance.
    """
    log_format = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(log_format)
    app.logger.addHandler(stream_handler)
    app.logger.setLevel(log_level)

    package_logger = logging.getLogger('xibo_portal')
    if not package_logger.handlers:
        package_logger.addHandler(stream_handler)
    package_logger.setLevel(log_level)


def _register_blueprints(app: Flask) -> None:
    """
    Register API blueprints with the application.

    Args:
        app: Flask application instance.
    """
    from xibo_portal.routes import layouts_bp, media_bp, regions_bp, widgets_bp

    app.register_blueprint(layouts_bp, url_prefix='/api/layouts')
    app.register_blueprint(widgets_bp, url_prefix='/api/widgets')
    app.register_blueprint(regions_bp, url_prefix='/api/regions')
    app.register_blueprint(media_bp, url_prefix='/api/media')
    app.logger.info('Registered layouts, widgets, regions and media blueprints under /api')


def _error_response(error: str, message: str, status_code: int, code: Optional[str] = None, details=None):
    body = {
        'status': 'error',
        'error': error,
        'message': message,
    }
    if code:
        body['code'] = code
    if details:
        body['details'] = details
    return jsonify(body), status_code


def _register_error_handlers(app: Flask) -> None:
    """
    Register error handlers for HTTP errors, engine conditions and
    upstream failures.

    Args:
        app: Flask application instance.
    """
    @app.errorhandler(400)
    def bad_request(error):
        return _error_response(
            'Bad Request',
            str(error.description) if hasattr(error, 'description') else 'Invalid request',
            400,
        )

    @app.errorhandler(404)
    def not_found(error):
        return _error_response('Not Found', 'The requested resource was not found', 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _error_response('Method Not Allowed', 'The method is not allowed for this resource', 405)

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f'Internal server error: {error}')
        return _error_response('Internal Server Error', 'An unexpected error occurred', 500)

    # Engine conditions

    @app.errorhandler(LayoutNotFound)
    def layout_not_found(error):
        return _error_response('Not Found', error.message, 404, error.code, error.details)

    @app.errorhandler(CheckoutFailed)
    def checkout_failed(error):
        return _error_response('Checkout Failed', error.message, 409, error.code, error.details)

    @app.errorhandler(CheckoutConflict)
    def checkout_conflict(error):
        return _error_response('Conflict', error.message, 409, error.code, error.details)

    @app.errorhandler(StateTransitionError)
    def invalid_transition(error):
        return _error_response('Conflict', error.message, 409, error.code)

    @app.errorhandler(EditTargetNotFound)
    def edit_target_not_found(error):
        return _error_response('Not Found', error.message, 404, error.code, error.details)

    @app.errorhandler(MutationError)
    def mutation_failed(error):
        status_code = error.status_code if error.status_code and 400 <= error.status_code < 500 else 502
        return _error_response('Update Rejected', error.message, status_code, error.code, error.details)

    @app.errorhandler(EngineError)
    def engine_error(error):
        app.logger.error(f'Unhandled engine error: {error}')
        return _error_response('Internal Server Error', error.message, 500, error.code)

    # Upstream failures

    @app.errorhandler(UserContextError)
    def missing_user_context(error):
        return _error_response('Unauthorized', error.message, 401)

    @app.errorhandler(XiboAuthenticationError)
    def upstream_unauthorized(error):
        return _error_response('Unauthorized', 'The CMS rejected the access token. Please login again.', 401)

    @app.errorhandler(XiboTimeoutError)
    def upstream_timeout(error):
        return _error_response('Gateway Timeout', error.message, 504)

    @app.errorhandler(XiboConnectionError)
    def upstream_unreachable(error):
        return _error_response('Bad Gateway', error.message, 502)

    @app.errorhandler(XiboClientError)
    def upstream_error(error):
        return _error_response('Upstream Error', error.message, error.status_code or 500)


def _register_jwt_handlers(app: Flask) -> None:
    """
    Register JWT-specific error handlers.

    Args:
        app: Flask application instance.
    """
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return _error_response('Token Expired', 'The access token has expired', 401)

    @jwt.invalid_token_loader
    def invalid_token_callback(error_string):
        return _error_response('Invalid Token', 'The access token is invalid', 401)

    @jwt.unauthorized_loader
    def missing_token_callback(error_string):
        return _error_response('Unauthorized', 'Access token is missing', 401)


if __name__ == '__main__':
    application = create_app()
    application.run(
        host=application.config.get('HOST', '0.0.0.0'),
        port=application.config.get('PORT', 5004),
        debug=application.config.get('DEBUG', False),
    )
