"""
Client routes - lookup, point credits and reward redemption at the counter
"""
from decimal import Decimal, InvalidOperation

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity
from werkzeug.security import check_password_hash

from extensions import db
from models import EndUser, Merchant, MerchantClient
from services import get_engine
from services.errors import LoyaltyError, RateLimitedError
from services.points import (
    credit_points,
    customer_snapshot,
    find_end_user,
    find_or_create_end_user,
    redeem_reward,
)
from utils.activity_logger import client_ip, log_activity
from utils.normalizer import parse_contact_info
from utils.rbac import current_merchant_id, current_role, staff_required

clients_bp = Blueprint('clients', __name__)


def _staff_id():
    try:
        return int(get_jwt_identity())
    except (TypeError, ValueError):
        return None


def _resolve_end_user(data):
    """Find (or create) the customer named by the request body"""
    end_user_id = data.get('endUserId')
    if end_user_id not in (None, ''):
        try:
            return db.session.get(EndUser, int(end_user_id))
        except (TypeError, ValueError):
            return None

    email = data.get('email')
    phone = data.get('phone')
    contact = parse_contact_info(data.get('contactInfo'))
    if contact is not None:
        email, phone = contact.email, contact.phone

    if not email and not phone:
        return None
    end_user, _ = find_or_create_end_user(email=email, phone=phone, name=data.get('name'))
    return end_user


@clients_bp.route('/lookup', methods=['GET'])
@staff_required()
def lookup_client():
    """Find a customer by email or phone (query params)"""
    try:
        end_user = find_end_user(request.args.get('email'), request.args.get('phone'))
        merchant = db.session.get(Merchant, current_merchant_id())
        if not end_user or not merchant:
            return jsonify({
                'success': False,
                'message': 'Client not found'
            }), 404

        return jsonify({
            'success': True,
            'data': customer_snapshot(merchant, end_user)
        }), 200

    except Exception as e:
        return jsonify({
            'success': False,
            'message': f'Failed to look up client: {str(e)}'
        }), 500


@clients_bp.route('/credit', methods=['POST'])
@staff_required()
def credit():
    """
    Credit points for a purchase

    Request body:
    {
        "contactInfo" | "email" | "phone" | "endUserId": ...,
        "amount": number,
        "notes": "string" (optional),
        "idempotencyKey": "string" (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        merchant_id = current_merchant_id()

        try:
            amount = Decimal(str(data.get('amount')))
        except (InvalidOperation, ValueError):
            amount = None
        if amount is None or not amount.is_finite() or amount <= 0:
            return jsonify({
                'success': False,
                'message': 'A positive amount is required'
            }), 400

        cap = Decimal(str(current_app.config.get('CASHIER_MAX_CREDIT_AMOUNT', 200)))
        if current_role() == 'cashier' and amount > cap:
            return jsonify({
                'success': False,
                'message': f'Cashiers cannot credit more than {cap} per transaction'
            }), 403

        merchant = db.session.get(Merchant, merchant_id)
        if not merchant or not merchant.is_active:
            return jsonify({
                'success': False,
                'message': 'Merchant is not active'
            }), 403

        end_user = _resolve_end_user(data)
        if not end_user:
            return jsonify({
                'success': False,
                'message': 'Client not found'
            }), 404

        idempotency_key = str(data.get('idempotencyKey') or '').strip()[:100] or None
        source = 'qr' if data.get('source') == 'qr' else 'manual'

        result = credit_points(
            merchant,
            end_user,
            amount,
            staff_id=_staff_id(),
            notes=(data.get('notes') or None),
            idempotency_key=idempotency_key,
            source=source,
        )
        mc = result['merchant_client']
        tx = result['transaction']

        if not result['idempotent']:
            log_activity(
                merchant_id=merchant_id,
                user_id=_staff_id(),
                action='points_credited',
                entity_type='merchant_client',
                entity_id=mc.id,
                details={'amount': float(amount), 'points': tx.points_delta},
            )

        return jsonify({
            'success': True,
            'message': 'Points credited',
            'data': {
                'transaction': tx.to_dict(),
                'merchantClient': mc.to_dict(),
                'pointsEarned': tx.points_delta,
                'newBalance': int(mc.points_balance or 0),
                'isNewClient': result['is_new_relation'],
                'idempotent': result['idempotent'],
            }
        }), 200

    except LoyaltyError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception('❌ Credit failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500


@clients_bp.route('/reward', methods=['POST'])
@staff_required()
def reward():
    """
    Redeem the merchant's reward

    Request body:
    {
        "merchantClientId": int,
        "verifyToken": "string" (optional, skips the PIN once),
        "pinToken": "string" (optional),
        "pin": "string" (required without a valid verifyToken),
        "notes": "string" (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        merchant_id = current_merchant_id()
        engine = get_engine()

        try:
            merchant_client_id = int(data.get('merchantClientId'))
        except (TypeError, ValueError):
            return jsonify({
                'success': False,
                'message': 'merchantClientId is required'
            }), 400

        merchant = db.session.get(Merchant, merchant_id)
        mc = MerchantClient.query.filter_by(id=merchant_client_id, merchant_id=merchant_id).first()
        if not merchant or not mc:
            return jsonify({
                'success': False,
                'message': 'Client not found'
            }), 404
        end_user = mc.end_user

        verified = False
        verify_token = data.get('verifyToken')
        if verify_token:
            verified = engine.check_verify_token(verify_token, merchant_id, end_user.id)

        if not verified:
            pin = str(data.get('pin') or '').strip()
            if not pin or not end_user.has_pin:
                return jsonify({
                    'success': False,
                    'message': 'Customer verification required',
                    'error': 'verification_required'
                }), 403

            limiter = engine.login_limiter
            origin = client_ip()
            pin_key = f'pin:{end_user.id}'
            status = limiter.check(origin, pin_key)
            if status.blocked:
                err = RateLimitedError(status.minutes_remaining)
                return jsonify(err.to_dict()), err.status_code

            pin_hash = end_user.pin_hash
            pin_token = data.get('pinToken')
            if pin_token:
                pin_hash = engine.pin_hash_for(pin_token)
                if pin_hash is None or pin_hash != end_user.pin_hash:
                    return jsonify({
                        'success': False,
                        'message': 'PIN session expired. Scan the customer again.',
                        'error': 'invalid_pin_token'
                    }), 403

            if not check_password_hash(pin_hash, pin):
                limiter.record_failure(origin, pin_key)
                return jsonify({
                    'success': False,
                    'message': 'Incorrect PIN',
                    'error': 'invalid_pin'
                }), 401
            limiter.clear(origin, pin_key)

        result = redeem_reward(
            merchant,
            mc.id,
            staff_id=_staff_id(),
            notes=(data.get('notes') or None),
        )
        tx = result['transaction']

        log_activity(
            merchant_id=merchant_id,
            user_id=_staff_id(),
            action='reward_redeemed',
            entity_type='merchant_client',
            entity_id=mc.id,
            details={'points': tx.points_delta, 'verified_by': 'token' if verified else 'pin'},
        )

        return jsonify({
            'success': True,
            'message': 'Reward redeemed',
            'data': {
                'transaction': tx.to_dict(),
                'newBalance': int(result['merchant_client'].points_balance or 0),
                'rewardDescription': merchant.reward_description,
            }
        }), 200

    except LoyaltyError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception('❌ Reward redemption failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500


def _set_blocked(merchant_client_id, blocked):
    merchant_id = current_merchant_id()
    try:
        mc = MerchantClient.query.filter_by(id=merchant_client_id, merchant_id=merchant_id).first()
        if not mc:
            return jsonify({
                'success': False,
                'message': 'Client not found'
            }), 404

        mc.is_blocked = blocked
        db.session.commit()

        log_activity(
            merchant_id=merchant_id,
            user_id=_staff_id(),
            action='client_blocked' if blocked else 'client_unblocked',
            entity_type='merchant_client',
            entity_id=mc.id,
        )

        return jsonify({
            'success': True,
            'message': 'Client blocked' if blocked else 'Client unblocked',
            'data': mc.to_dict()
        }), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception('❌ Updating client block status failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500


@clients_bp.route('/<int:merchant_client_id>/block', methods=['POST'])
@staff_required('owner', 'manager')
def block_client(merchant_client_id):
    """Stop crediting and redeeming for this customer at the merchant"""
    return _set_blocked(merchant_client_id, True)


@clients_bp.route('/<int:merchant_client_id>/unblock', methods=['POST'])
@staff_required('owner', 'manager')
def unblock_client(merchant_client_id):
    return _set_blocked(merchant_client_id, False)
