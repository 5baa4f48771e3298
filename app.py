"""
Flask Application Factory for the AI Club Notification Service

Wires the notification pipeline together:
- Settings and template stores backed by SQLAlchemy
- Notification dispatcher with a pluggable delivery transport
- Email delivery function with permissive CORS
- Admin API, registration hook and health endpoint
"""

import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from api.admin import admin_bp
from api.notifications import notifications_bp
from api.send_email import send_email_bp
from config.settings import get_config
from core.activity_log import ActivityLog
from core.database import check_database, init_database
from core.security_manager import SecurityManager
from core.settings_store import SettingsStore
from core.smtp_transport import build_delivery_transport
from core.template_store import TemplateStore
from middleware.security import security_headers
from services.diagnostics import EmailDiagnostics
from services.notifications import NotificationDispatcher


def setup_logging(app: Flask) -> None:
    """
    Configure the application logger: console output plus an optional
    rotating log file.
    """
    app.logger.handlers.clear()

    formatter = logging.Formatter(
        fmt='%(asctime)s %(name)-24s %(levelname)-8s %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    handlers = [logging.StreamHandler()]
    if app.config.get('LOG_FILE'):
        handlers.append(logging.handlers.RotatingFileHandler(
            app.config['LOG_FILE'],
            maxBytes=app.config.get('LOG_MAX_BYTES', 10 * 1024 * 1024),
            backupCount=app.config.get('LOG_BACKUP_COUNT', 5)
        ))

    # Package loggers (core.*, services.*, api.*) propagate to the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(log_level)
        if not any(type(existing) is type(handler) for existing in root_logger.handlers):
            root_logger.addHandler(handler)

    app.logger.setLevel(log_level)

    if not app.debug:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)


def configure_services(app: Flask) -> None:
    """
    Build the pipeline components and attach them to the app
    """
    engine, session_factory = init_database(
        app.config['DATABASE_URL'],
        echo=app.config.get('DATABASE_ECHO', False)
    )
    app.db_engine = engine
    app.session_factory = session_factory

    security_manager = SecurityManager.from_config(app.config)

    app.settings_store = SettingsStore(
        session_factory,
        security_manager,
        fallback_admin_email=app.config['FALLBACK_ADMIN_EMAIL'],
        notifications_enabled_default=app.config.get('NOTIFICATIONS_ENABLED_DEFAULT', True),
    )
    app.template_store = TemplateStore(session_factory)
    app.activity_log = ActivityLog(session_factory)

    app.delivery_backend = build_delivery_transport(app.config['DELIVERY_BACKEND'], app.config)
    app.dispatcher = NotificationDispatcher(
        settings_store=app.settings_store,
        template_store=app.template_store,
        transport=build_delivery_transport(app.config['NOTIFICATION_TRANSPORT'], app.config),
        activity_log=app.activity_log,
        fallback_admin_email=app.config['FALLBACK_ADMIN_EMAIL'],
    )
    app.diagnostics = EmailDiagnostics(
        app.settings_store,
        app.template_store,
        app.activity_log,
        window_hours=app.config['DIAGNOSTIC_WINDOW_HOURS'],
        database_check=lambda: check_database(session_factory),
    )

    app.logger.info(
        f"Notification transport: {app.dispatcher.transport.name}, "
        f"delivery backend: {app.delivery_backend.name}"
    )


def configure_security(app: Flask) -> None:
    """CORS for the admin API and registration hook"""
    CORS(app,
         resources={r'/api/*': {'origins': app.config.get('CORS_ORIGINS', [])}},
         allow_headers=['Content-Type', 'Authorization', 'X-Admin-Token'])


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(send_email_bp, url_prefix='/functions')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(notifications_bp, url_prefix='/api')

    app.logger.info("Application blueprints registered")


def configure_error_handlers(app: Flask) -> None:
    """
    JSON error responses for every error status
    """
    @app.errorhandler(400)
    def bad_request(error):
        app.logger.warning(f"Bad request from {request.remote_addr}: {error}")
        return jsonify({
            'error': 'Bad Request',
            'message': 'Invalid request format or parameters',
            'status_code': 400
        }), 400

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({
            'error': 'Unauthorized',
            'message': 'Authentication required',
            'status_code': 401
        }), 401

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({
            'error': 'Forbidden',
            'message': 'Insufficient permissions',
            'status_code': 403
        }), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'Not Found',
            'message': 'The requested resource was not found',
            'status_code': 404
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'Method Not Allowed',
            'message': f'{request.method} is not allowed for this resource',
            'status_code': 405
        }), 405

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Internal server error: {error}", exc_info=True)
        return jsonify({
            'error': 'Internal Server Error',
            'message': 'An unexpected error occurred',
            'status_code': 500
        }), 500

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle unexpected exceptions"""
        if isinstance(e, HTTPException):
            return e

        app.logger.error(f"Unhandled exception: {e}", exc_info=True)
        return jsonify({
            'error': 'Internal Server Error',
            'message': 'An unexpected error occurred',
            'status_code': 500
        }), 500


def configure_health_checks(app: Flask) -> None:
    @app.route('/health')
    def health_check():
        """Basic health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'version': app.config.get('VERSION', '1.0.0')
        })

    @app.route('/health/detailed')
    def detailed_health_check():
        """Detailed health check with component status"""
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'components': {}
        }

        try:
            check_database(app.session_factory)
            health_status['components']['database'] = 'healthy'
        except Exception as e:
            app.logger.error(f"Database health check failed: {str(e)}")
            health_status['components']['database'] = f'unhealthy: {str(e)}'
            health_status['status'] = 'unhealthy'

        health_status['components']['notification_transport'] = app.dispatcher.transport.name
        health_status['components']['delivery_backend'] = app.delivery_backend.name

        status_code = 200 if health_status['status'] == 'healthy' else 503
        return jsonify(health_status), status_code


def create_app(config_name: str = None, overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Flask application factory

    Args:
        config_name: Configuration environment ('development', 'testing', 'production')
        overrides: Config values applied after the environment config

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    setup_logging(app)
    app.logger.info(f"Starting notification service with {config_class.__name__}")

    configure_services(app)
    configure_security(app)
    register_blueprints(app)
    configure_error_handlers(app)
    configure_health_checks(app)
    app.after_request(security_headers)

    app.logger.info("Flask application factory completed successfully")
    return app


if __name__ == '__main__':
    app = create_app('development')
    app.run(host='0.0.0.0', port=5000, debug=True)
