"""Flask application factory for the jewelry pricing service."""
import logging
import os
from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix


logger = logging.getLogger('jewelry_pricing')


def create_app(config: dict | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional configuration dictionary to override defaults.
            PRICING_CONFIG may hold a ready PricingConfig and RATE_CACHE a
            cache backend instance (tests use both).

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    # Trust X-Forwarded-For from the gateway in front of the service
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    app.config.update(
        JSON_SORT_KEYS=False,
        DATA_DIR=os.environ.get('DATA_DIR', os.path.join(os.path.dirname(__file__), '..', 'data')),
    )

    # Override with provided config
    if config:
        app.config.update(config)

    from jewelry_pricing.services.config import load_pricing_config
    if app.config.get('PRICING_CONFIG') is None:
        app.config['PRICING_CONFIG'] = load_pricing_config()

    # Rate cache shared by every request of this process
    from jewelry_pricing.services.cache import get_rate_cache
    cache = app.config.get('RATE_CACHE')
    if cache is None:
        cache = get_rate_cache(app.config['PRICING_CONFIG'], app.config['DATA_DIR'])
    app.extensions['rate_cache'] = cache

    # Initialize database
    from jewelry_pricing import db
    db.init_app(app)

    # Register CLI commands
    from jewelry_pricing import cli
    cli.register_cli(app)

    # Register blueprints
    from jewelry_pricing.routes.health import health_bp
    from jewelry_pricing.routes.api import api_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(api_bp, url_prefix='/api/v1')

    from jewelry_pricing.services.exceptions import PricingError

    @app.errorhandler(PricingError)
    def _handle_pricing_error(error: PricingError):
        if error.status_code >= 500:
            logger.error(f"{error.code}: {error.message}")
        else:
            logger.info(f"{error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    # Start background rate refresh (for single-container deployments)
    if app.config['PRICING_CONFIG'].background_sync:
        from jewelry_pricing.services.background_sync import start_background_sync
        start_background_sync(app)

    return app
