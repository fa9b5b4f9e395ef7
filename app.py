"""
Loyalty QR - Flask Backend Application
Main entry point
"""
import atexit
import os
from pathlib import Path

from flask import Flask, jsonify, request
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

# Load environment variables from `.env` next to this file (if it exists).
# In production, do NOT override real environment variables injected by the host.
_is_production = os.getenv('FLASK_ENV', 'development') == 'production'
_dotenv_path = Path(__file__).resolve().parent / '.env'
if _dotenv_path.exists():
    load_dotenv(dotenv_path=_dotenv_path, override=(not _is_production))

# Import extensions and routes
from extensions import init_extensions, db
from config.database import SQLALCHEMY_DATABASE_URI, SQLALCHEMY_TRACK_MODIFICATIONS
from config.settings import get_config
from database.init_db import register_commands
from routes import register_blueprints
from services.engine import EXTENSION_KEY, build_engine


def _start_recognition_engine(app):
    """Build the in-memory stores and, outside tests, their sweeper"""
    engine = build_engine(app.config, logger=app.logger)
    app.extensions[EXTENSION_KEY] = engine

    if app.config.get('QR_SWEEPER_ENABLED', True) and not app.testing:
        engine.sweeper.start()
        atexit.register(engine.shutdown)
        app.logger.info(
            f"🧹 Store sweeper started (every {engine.sweeper.interval_seconds:g}s)"
        )
    return engine


def create_app(config_class=None):
    """Application factory pattern"""
    app = Flask(__name__)

    # Disable strict slashes to prevent 308 redirects
    app.url_map.strict_slashes = False

    # Load configuration
    if config_class is None:
        config_class = get_config()

    app.config.from_object(config_class)
    app.config.setdefault('SQLALCHEMY_DATABASE_URI', SQLALCHEMY_DATABASE_URI)
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = SQLALCHEMY_TRACK_MODIFICATIONS
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # remote_addr only reflects X-Forwarded-For hops added by trusted proxies
    trusted_hops = int(app.config.get('PROXY_FIX_X_FOR', 0))
    if trusted_hops > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=trusted_hops, x_proto=1)

    # Initialize extensions
    init_extensions(app)

    _start_recognition_engine(app)

    # Register blueprints and CLI commands
    register_blueprints(app)
    register_commands(app)

    # Health check endpoint
    @app.route('/api/health', methods=['GET'])
    def health_check():
        return jsonify({
            'success': True,
            'message': 'Loyalty QR API is running',
            'version': app.config.get('APP_VERSION', '1.0.0')
        }), 200

    @app.route('/api', methods=['GET'])
    def api_index():
        return jsonify({
            'name': app.config.get('APP_NAME', 'Loyalty QR API'),
            'version': app.config.get('APP_VERSION', '1.0.0'),
            'description': 'Loyalty points and in-store QR recognition API',
            'endpoints': {
                'auth': '/api/auth',
                'qr': '/api/qr',
                'client': '/api/client',
                'clients': '/api/clients'
            }
        }), 200

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        allowed = getattr(error, 'valid_methods', None)
        allowed_str = ''
        if allowed:
            allowed_str = f" Allowed: {', '.join(sorted(set(allowed)))}"

        # Include method/path so client logs immediately reveal what was called
        msg = f"Method not allowed ({request.method} {request.path}).{allowed_str}".strip()
        return jsonify({'success': False, 'message': msg}), 405

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500

    return app


# Create application instance
app = create_app()


if __name__ == '__main__':
    # Development server
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('DEBUG', 'False').lower() == 'true'

    print(f"""
    ╔══════════════════════════════════════════════════════════╗
    ║                Loyalty QR - Backend Server               ║
    ╠══════════════════════════════════════════════════════════╣
    ║  Local: {f'http://localhost:{port}':<49}║
    ║  Debug mode: {str(debug):<44}║
    ║                                                          ║
    ║  Endpoints:                                              ║
    ║  • POST /api/auth/login           - Staff login          ║
    ║  • POST /api/qr/self-identify      - Customer check-in    ║
    ║  • GET  /api/qr/pending-queue      - Waiting customers    ║
    ║  • POST /api/qr/consume/<id>       - Open customer card   ║
    ║  • POST /api/clients/credit        - Credit points        ║
    ║  • POST /api/clients/reward        - Redeem reward        ║
    ║  • POST /api/client/credential-login - Customer login     ║
    ╚══════════════════════════════════════════════════════════╝
    """)

    # Single process: the recognition stores live in this process's memory
    app.run(host='0.0.0.0', port=port, debug=debug, use_reloader=False)
