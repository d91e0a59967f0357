"""Flask application factory."""
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from quotation_tool.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            profiles_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Flask-Mail for quotation notifications
    from quotation_tool.services.email_service import init_mail
    init_mail(app)

    # Redis cache for company settings
    from quotation_tool.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from quotation_tool.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=1,      # Trust X-Forwarded-For with 1 proxy
            x_proto=1,    # Trust X-Forwarded-Proto
            x_host=1,     # Trust X-Forwarded-Host
            x_port=1,     # Trust X-Forwarded-Port
            x_prefix=0    # No prefix (not behind a URL prefix)
        )

    # Initialize database
    init_db(app)

    # Load user and company context before each request
    from quotation_tool.middleware import load_user_and_company

    @app.before_request
    def before_request_handler():
        load_user_and_company()

    # Error Handlers
    from quotation_tool.exceptions import QuotationToolError

    @app.errorhandler(QuotationToolError)
    def handle_quotation_tool_error(error):
        """Handle custom application exceptions."""
        app.logger.warning(f"{type(error).__name__} [{error.status_code}] on {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'status': 'error', 'message': 'Method Not Allowed'}), 405

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException) and error.code and error.code < 500:
            return jsonify({'status': 'error', 'message': error.description}), error.code
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from quotation_tool.blueprints.main import main_bp
    from quotation_tool.blueprints.companies import companies_bp
    from quotation_tool.blueprints.clients import clients_bp
    from quotation_tool.blueprints.quotations import quotations_bp
    from quotation_tool.blueprints.quotation_templates import quotation_templates_bp
    from quotation_tool.blueprints.notifications import notifications_bp
    from quotation_tool.blueprints.metrics import metrics_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(companies_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(quotations_bp)
    app.register_blueprint(quotation_templates_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from quotation_tool.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
