"""
Authentication routes - Staff login, logout and profile
"""
from datetime import datetime
from flask import Blueprint, current_app, request, jsonify
from flask_jwt_extended import create_access_token, get_jwt_identity
from werkzeug.security import check_password_hash, generate_password_hash
from extensions import db
from models.user import User
from services import get_engine
from services.errors import RateLimitedError
from utils.activity_logger import client_ip, log_activity
from utils.rbac import staff_required

auth_bp = Blueprint('auth', __name__)

_DUMMY_PASSWORD_HASH = generate_password_hash('no-such-staff-account')


@auth_bp.route('/login', methods=['POST'])
def login():
    """
    Staff login endpoint

    Request body:
    {
        "email": "string",
        "password": "string"
    }
    """
    try:
        data = request.get_json(silent=True)

        if not data:
            return jsonify({
                'success': False,
                'message': 'No data provided'
            }), 400

        email = str(data.get('email') or '').strip().lower()
        password = data.get('password')

        if not email:
            return jsonify({
                'success': False,
                'message': 'Email is required'
            }), 400

        if not password:
            return jsonify({
                'success': False,
                'message': 'Password is required'
            }), 400

        limiter = get_engine().staff_login_limiter
        origin = client_ip()

        status = limiter.check(origin, email)
        if status.blocked:
            err = RateLimitedError(status.minutes_remaining)
            return jsonify(err.to_dict()), err.status_code

        user = User.query.filter_by(email=email).first()

        if user:
            authenticated = user.check_password(password)
        else:
            check_password_hash(_DUMMY_PASSWORD_HASH, str(password))
            authenticated = False

        if not authenticated:
            limiter.record_failure(origin, email)
            return jsonify({
                'success': False,
                'message': 'Invalid email or password'
            }), 401

        limiter.clear(origin, email)

        # Check if user is active
        if not user.is_active:
            return jsonify({
                'success': False,
                'message': 'Account is deactivated. Please contact the owner.'
            }), 403

        if not user.merchant or user.merchant.status == 'suspended':
            return jsonify({
                'success': False,
                'message': 'This merchant account is suspended'
            }), 403

        user.last_login = datetime.now()
        db.session.commit()

        access_token = create_access_token(
            identity=str(user.id),
            additional_claims={
                'role': user.role,
                'merchant_id': user.merchant_id,
                'display_name': user.name,
            }
        )

        log_activity(
            merchant_id=user.merchant_id,
            user_id=user.id,
            action='login',
            entity_type='user',
            entity_id=user.id,
        )

        return jsonify({
            'success': True,
            'message': 'Login successful',
            'data': {
                'access_token': access_token,
                'user': user.to_dict(),
                'merchant': user.merchant.to_dict(),
            }
        }), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception('❌ Staff login failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500


@auth_bp.route('/logout', methods=['POST'])
@staff_required()
def logout():
    """Logout endpoint - tokens are stateless, so this only records the event"""
    user = db.session.get(User, int(get_jwt_identity()))
    if user:
        log_activity(
            merchant_id=user.merchant_id,
            user_id=user.id,
            action='logout',
            entity_type='user',
            entity_id=user.id,
        )

    return jsonify({
        'success': True,
        'message': 'Logout successful'
    }), 200


@auth_bp.route('/me', methods=['GET'])
@staff_required()
def get_current_user():
    """Get current authenticated staff member"""
    try:
        user = db.session.get(User, int(get_jwt_identity()))

        if not user:
            return jsonify({
                'success': False,
                'message': 'User not found'
            }), 404

        data = user.to_dict()
        data['merchant'] = user.merchant.to_dict() if user.merchant else None
        data['merchant_token'] = user.merchant.qr_token if user.merchant else None

        return jsonify({
            'success': True,
            'data': data
        }), 200

    except Exception as e:
        return jsonify({
            'success': False,
            'message': f'Failed to get user: {str(e)}'
        }), 500
