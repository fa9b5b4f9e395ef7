"""
Flask extensions initialization
"""
from flask import current_app, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_migrate import Migrate

# Initialize extensions
db = SQLAlchemy()
jwt = JWTManager()
cors = CORS()
migrate = Migrate()


def init_extensions(app):
    """Initialize all Flask extensions"""
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(
        app,
        resources={r"/api/*": {"origins": app.config.get('CORS_ORIGINS', '*')}},
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    )
    migrate.init_app(app, db)

    # JWT error handlers. Never log the token itself.
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        current_app.logger.info(f"❌ JWT Error: Token expired for subject {jwt_payload.get('sub')}")
        return jsonify({
            'success': False,
            'message': 'Token has expired. Please login again.',
            'error': 'token_expired'
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        current_app.logger.info(f"❌ JWT Error: Invalid token - {error}")
        return jsonify({
            'success': False,
            'message': 'Invalid token. Please login again.',
            'error': 'invalid_token'
        }), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        current_app.logger.info(f"❌ JWT Error: Missing token - {error}")
        return jsonify({
            'success': False,
            'message': 'Authorization token is missing. Please login.',
            'error': 'missing_token'
        }), 401

    @jwt.revoked_token_loader
    def revoked_token_callback(jwt_header, jwt_payload):
        current_app.logger.info(f"❌ JWT Error: Token revoked for subject {jwt_payload.get('sub')}")
        return jsonify({
            'success': False,
            'message': 'Token has been revoked. Please login again.',
            'error': 'token_revoked'
        }), 401

    return app
