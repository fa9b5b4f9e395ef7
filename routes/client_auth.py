"""
Customer authentication routes - PIN login for the customer app
"""
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, get_jwt_identity
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db
from models import EndUser, Merchant
from services import get_engine
from services.errors import RateLimitedError
from services.points import find_end_user
from utils.activity_logger import client_ip
from utils.normalizer import is_valid_pin, parse_contact_info
from utils.rbac import CLIENT_ROLE, client_required

client_auth_bp = Blueprint('client_auth', __name__)

# Compared against for unknown accounts so both paths cost one hash check
_DUMMY_PIN_HASH = generate_password_hash('no-such-account')


@client_auth_bp.route('/credential-login', methods=['POST'])
def credential_login():
    """
    Customer login with email/phone and PIN

    Request body:
    {
        "merchantToken": "string",
        "contactInfo": "email or phone",
        "secret": "string"
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        merchant_token = str(data.get('merchantToken') or '').strip()
        contact = parse_contact_info(data.get('contactInfo'))
        secret = data.get('secret')

        if not merchant_token or contact is None or not isinstance(secret, str) or not secret:
            return jsonify({
                'success': False,
                'message': 'Merchant token, contact info and PIN are required'
            }), 400

        merchant = Merchant.find_active_by_token(merchant_token)
        if not merchant:
            return jsonify({
                'success': False,
                'message': 'Merchant not found'
            }), 404

        limiter = get_engine().login_limiter
        origin = client_ip()
        identifier = contact.identifier

        status = limiter.check(origin, identifier)
        if status.blocked:
            err = RateLimitedError(status.minutes_remaining)
            return jsonify(err.to_dict()), err.status_code

        end_user = find_end_user(contact.email, contact.phone)
        stored_hash = end_user.pin_hash if end_user and end_user.pin_hash else _DUMMY_PIN_HASH
        matches = check_password_hash(stored_hash, secret)

        if not matches or stored_hash is _DUMMY_PIN_HASH:
            limiter.record_failure(origin, identifier)
            return jsonify({
                'success': False,
                'message': 'Invalid credentials'
            }), 401

        limiter.clear(origin, identifier)

        if end_user.is_blocked:
            return jsonify({
                'success': False,
                'message': 'This account is blocked'
            }), 403

        days = int(current_app.config.get('CLIENT_SESSION_DAYS', 30))
        access_token = create_access_token(
            identity=str(end_user.id),
            additional_claims={'role': CLIENT_ROLE},
            expires_delta=timedelta(days=days),
        )

        return jsonify({
            'success': True,
            'message': 'Login successful',
            'data': {
                'access_token': access_token,
                'client': end_user.to_dict(),
                'merchant': {
                    'id': merchant.id,
                    'business_name': merchant.business_name,
                },
            }
        }), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception('❌ Customer login failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500


@client_auth_bp.route('/me', methods=['GET'])
@client_required
def get_current_client():
    """Profile of the logged-in customer with one card per merchant"""
    try:
        end_user = db.session.get(EndUser, int(get_jwt_identity()))
        if not end_user:
            return jsonify({
                'success': False,
                'message': 'Client not found'
            }), 404

        cards = []
        for mc in end_user.cards:
            merchant = mc.merchant
            threshold = int(merchant.points_for_reward or 0)
            balance = int(mc.points_balance or 0)
            cards.append({
                'merchant_id': merchant.id,
                'business_name': merchant.business_name,
                'points_balance': balance,
                'visit_count': int(mc.visit_count or 0),
                'points_for_reward': threshold,
                'reward_description': merchant.reward_description,
                'can_redeem': threshold > 0 and balance >= threshold,
                'last_visit': mc.last_visit.isoformat() if mc.last_visit else None,
            })

        data = end_user.to_dict()
        data['qr_token'] = end_user.qr_token
        data['cards'] = cards

        return jsonify({'success': True, 'data': data}), 200

    except Exception as e:
        return jsonify({
            'success': False,
            'message': f'Failed to get client: {str(e)}'
        }), 500


@client_auth_bp.route('/pin', methods=['POST'])
@client_required
def set_client_pin():
    """
    Set or change the customer's PIN

    Request body:
    {
        "newPin": "4 digits",
        "currentPin": "4 digits" (required when a PIN is already set)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        end_user = db.session.get(EndUser, int(get_jwt_identity()))
        if not end_user:
            return jsonify({
                'success': False,
                'message': 'Client not found'
            }), 404

        if end_user.is_blocked:
            return jsonify({
                'success': False,
                'message': 'This account is blocked'
            }), 403

        new_pin = str(data.get('newPin') or '').strip()
        if not is_valid_pin(new_pin):
            return jsonify({
                'success': False,
                'message': 'PIN must be a 4-digit number'
            }), 400

        if end_user.has_pin:
            current_pin = str(data.get('currentPin') or '').strip()
            if not current_pin:
                return jsonify({
                    'success': False,
                    'message': 'Current PIN is required'
                }), 400

            limiter = get_engine().login_limiter
            origin = client_ip()
            pin_key = f'pin:{end_user.id}'
            status = limiter.check(origin, pin_key)
            if status.blocked:
                err = RateLimitedError(status.minutes_remaining)
                return jsonify(err.to_dict()), err.status_code

            if not end_user.check_pin(current_pin):
                limiter.record_failure(origin, pin_key)
                return jsonify({
                    'success': False,
                    'message': 'Current PIN is incorrect'
                }), 403
            limiter.clear(origin, pin_key)

        end_user.set_pin(new_pin)
        db.session.commit()
        current_app.logger.info(f"🔑 PIN updated for client {end_user.id}")

        return jsonify({
            'success': True,
            'message': 'PIN updated',
            'data': {'hasPin': True}
        }), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception('❌ PIN update failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500
