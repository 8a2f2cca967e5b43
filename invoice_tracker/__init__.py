"""Flask application factory."""
from flask import Flask, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException
from invoice_tracker.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize CSRF protection
    CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'Session expired or CSRF token missing. Fetch /csrf-token and retry.'}), 400

    # Sentry error tracking in production
    if app.config.get('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=app.config.get('ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache for the line repository
    from invoice_tracker.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from invoice_tracker.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: trust X-Forwarded-* from the reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Error Handlers
    from invoice_tracker.exceptions import InvoiceTrackerError

    @app.errorhandler(InvoiceTrackerError)
    def handle_app_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"InvoiceTrackerError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"InvoiceTrackerError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception: {error}", exc_info=error)
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from invoice_tracker.blueprints.main import main_bp
    from invoice_tracker.blueprints.invoices import invoices_bp
    from invoice_tracker.blueprints.lines import lines_bp
    from invoice_tracker.blueprints.reconciliation import reconciliation_bp
    from invoice_tracker.blueprints.accounting import accounting_bp
    from invoice_tracker.blueprints.metrics import metrics_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(lines_bp)
    app.register_blueprint(reconciliation_bp)
    app.register_blueprint(accounting_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from invoice_tracker.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
