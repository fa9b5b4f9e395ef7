"""
API Routes package
"""
from .auth import auth_bp
from .qr import qr_bp
from .client_auth import client_auth_bp
from .clients import clients_bp

__all__ = [
    'auth_bp',
    'qr_bp',
    'client_auth_bp',
    'clients_bp',
]


def register_blueprints(app):
    """Register all API blueprints"""
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(qr_bp, url_prefix='/api/qr')
    app.register_blueprint(client_auth_bp, url_prefix='/api/client')
    app.register_blueprint(clients_bp, url_prefix='/api/clients')

    return app
