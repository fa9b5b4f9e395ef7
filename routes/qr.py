"""
QR recognition routes - customers announce themselves at the counter,
staff pick them up from the pending queue
"""
from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity

from extensions import db
from models import EndUser, Merchant
from services import get_engine
from services.cooldown import CooldownRecord
from services.errors import CustomerBlockedError, LoyaltyError, RateLimitedError
from services.expiring_store import now_ts
from services.identification_queue import IdentificationRecord, new_identification_id
from services.points import customer_snapshot, find_or_create_end_user
from utils.activity_logger import client_ip, log_activity
from utils.mailer import send_welcome_email
from utils.normalizer import is_valid_pin, parse_contact_info
from utils.rbac import current_merchant_id, staff_required

qr_bp = Blueprint('qr', __name__)


def _outcome_payload(identification_id, is_new, display_name, points_balance):
    return {
        'identificationId': identification_id,
        'isNew': is_new,
        'displayName': display_name,
        'pointsBalance': points_balance,
    }


def _staff_id():
    try:
        return int(get_jwt_identity())
    except (TypeError, ValueError):
        return None


def _customer_payload(merchant, end_user):
    """Customer snapshot plus freshly minted capability tokens"""
    data = customer_snapshot(merchant, end_user)
    data.update(get_engine().grant_customer_access(merchant.id, end_user.id, end_user.pin_hash))
    return data


@qr_bp.route('/self-identify', methods=['POST'])
def self_identify():
    """
    Customer scanned the counter QR code and says "I'm here"

    Request body:
    {
        "merchantToken": "string",
        "contactInfo": "email or phone",
        "displayName": "string" (optional),
        "pin": "4 digits" (optional, new customers only)
    }
    """
    data = request.get_json(silent=True) or {}

    merchant_token = str(data.get('merchantToken') or '').strip()
    if not merchant_token:
        return jsonify({
            'success': False,
            'message': 'Merchant token is required'
        }), 400

    contact = parse_contact_info(data.get('contactInfo'))
    if contact is None:
        return jsonify({
            'success': False,
            'message': 'A valid email address or phone number is required'
        }), 400

    display_name = str(data.get('displayName') or '').strip()[:100] or None
    pin = str(data.get('pin') or '').strip() or None
    if pin and not is_valid_pin(pin):
        return jsonify({
            'success': False,
            'message': 'PIN must be a 4-digit number'
        }), 400

    engine = get_engine()
    t = now_ts()

    try:
        merchant = Merchant.find_active_by_token(merchant_token)
        if not merchant:
            return jsonify({
                'success': False,
                'message': 'Merchant not found'
            }), 404

        identifier = contact.identifier

        # Repeat within the cooldown: same answer, at most one flagged entry
        previous = engine.cooldowns.get_outcome(merchant.id, identifier, now=t)
        if previous:
            if engine.cooldowns.flag_duplicate(merchant.id, identifier, now=t):
                engine.identifications.enqueue(merchant.id, identifier, IdentificationRecord(
                    display_name=previous.display_name,
                    points_balance=previous.points_balance,
                    visit_count=previous.visit_count,
                    is_new=previous.is_new,
                    created_at=t,
                    customer_id=previous.customer_id,
                    email=contact.email,
                    phone=contact.phone,
                    recent_duplicate=True,
                    minutes_since_previous=previous.minutes_since(t),
                ))
            return jsonify({
                'success': True,
                'data': _outcome_payload(
                    previous.identification_id,
                    previous.is_new,
                    previous.display_name,
                    previous.points_balance,
                )
            }), 200

        ceiling = engine.registration_ceiling.hit(client_ip(), now=t)
        if ceiling.blocked:
            err = RateLimitedError(
                ceiling.minutes_remaining,
                f'Too many requests. Try again in {ceiling.minutes_remaining} minute(s).'
            )
            return jsonify(err.to_dict()), err.status_code

        end_user, created = find_or_create_end_user(
            email=contact.email,
            phone=contact.phone,
            name=display_name,
            pin=pin,
        )
        if end_user.is_blocked:
            raise CustomerBlockedError()

        snapshot = customer_snapshot(merchant, end_user)
        record = IdentificationRecord(
            display_name=snapshot['name'],
            points_balance=snapshot['pointsBalance'],
            visit_count=snapshot['visitCount'],
            is_new=snapshot['isNew'],
            created_at=t,
            customer_id=end_user.id,
            email=end_user.email,
            phone=end_user.phone,
        )
        # Claim the cooldown before queueing; a concurrent first
        # identification of the same customer may have claimed it meanwhile.
        outcome = CooldownRecord(
            identified_at=t,
            identification_id=new_identification_id(),
            is_new=record.is_new,
            display_name=record.display_name,
            points_balance=record.points_balance,
            customer_id=end_user.id,
            visit_count=record.visit_count,
        )
        winner = engine.cooldowns.record_outcome_if_absent(merchant.id, identifier, outcome, now=t)
        if winner is not outcome:
            current_app.logger.info(f"🔁 Concurrent identification at merchant {merchant.id} answered with the first outcome")
            return jsonify({
                'success': True,
                'data': _outcome_payload(
                    winner.identification_id,
                    winner.is_new,
                    winner.display_name,
                    winner.points_balance,
                )
            }), 200

        identification_id = engine.identifications.enqueue(
            merchant.id, identifier, record, identification_id=outcome.identification_id,
        )

        if created and end_user.email:
            sent, error, masked = send_welcome_email(
                to_email=end_user.email,
                merchant_name=merchant.business_name,
            )
            if sent:
                current_app.logger.info(f"📧 Welcome email sent to {masked}")
            else:
                current_app.logger.warning(f"⚠️ Welcome email not sent: {error}")

        return jsonify({
            'success': True,
            'data': _outcome_payload(
                identification_id,
                record.is_new,
                record.display_name,
                record.points_balance,
            )
        }), 200

    except LoyaltyError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception('❌ Self-identification failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500


@qr_bp.route('/identification-status/<identification_id>', methods=['GET'])
def identification_status(identification_id):
    """Polled by the customer's phone until staff pick the identification up"""
    try:
        merchant = Merchant.find_active_by_token(request.args.get('merchantToken'))
        record = None
        if merchant:
            record = get_engine().identifications.get(merchant.id, identification_id)

        if record is None:
            return jsonify({'success': True, 'data': {'active': False}}), 200

        return jsonify({
            'success': True,
            'data': {
                'active': True,
                'isNew': record.is_new,
                'displayName': record.display_name,
                'pointsBalance': record.points_balance,
            }
        }), 200

    except Exception:
        current_app.logger.exception('❌ Identification status failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500


@qr_bp.route('/pending-queue', methods=['GET'])
@staff_required()
def pending_queue():
    """Customers currently waiting at this merchant's counter"""
    entries = get_engine().identifications.list(current_merchant_id())
    return jsonify({
        'success': True,
        'data': [entry.to_dict() for entry in entries],
        'count': len(entries)
    }), 200


@qr_bp.route('/dismiss/<identification_id>', methods=['POST'])
@staff_required()
def dismiss(identification_id):
    get_engine().identifications.dismiss(current_merchant_id(), identification_id)
    return jsonify({'success': True, 'ok': True}), 200


@qr_bp.route('/consume/<identification_id>', methods=['POST'])
@staff_required()
def consume(identification_id):
    """Take a customer off the queue and open their card"""
    merchant_id = current_merchant_id()
    try:
        record = get_engine().identifications.consume(merchant_id, identification_id)

        merchant = db.session.get(Merchant, merchant_id)
        end_user = db.session.get(EndUser, record.customer_id) if record.customer_id else None
        if not merchant or not end_user:
            return jsonify({
                'success': False,
                'message': 'Customer not found'
            }), 404

        data = _customer_payload(merchant, end_user)
        data['recentDuplicate'] = record.recent_duplicate

        log_activity(
            merchant_id=merchant_id,
            user_id=_staff_id(),
            action='qr_identification_consumed',
            entity_type='end_user',
            entity_id=end_user.id,
            details={'recent_duplicate': record.recent_duplicate},
        )

        return jsonify({'success': True, 'data': data}), 200

    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception('❌ Consume identification failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500


@qr_bp.route('/customer-lookup/<personal_token>', methods=['GET'])
@staff_required()
def customer_lookup(personal_token):
    """Staff scanned the customer's personal QR code"""
    merchant_id = current_merchant_id()
    try:
        token = (personal_token or '').strip()
        end_user = EndUser.query.filter_by(qr_token=token).first() if token else None
        merchant = db.session.get(Merchant, merchant_id)
        if not merchant or not end_user:
            return jsonify({
                'success': False,
                'message': 'Customer not found'
            }), 404

        return jsonify({
            'success': True,
            'data': _customer_payload(merchant, end_user)
        }), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception('❌ Customer lookup failed')
        return jsonify({
            'success': False,
            'message': 'Internal server error'
        }), 500
