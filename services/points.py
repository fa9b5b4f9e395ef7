"""
Points services over the durable store: resolve customers, credit points,
redeem rewards. Each write happens in one database transaction.
"""
import math
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from extensions import db
from models import EndUser, MerchantClient, PointTransaction
from services.errors import (
    CustomerBlockedError,
    InsufficientPointsError,
    NotFoundError,
    ValidationError,
)
from utils.normalizer import normalize_email, normalize_phone


def find_end_user(email=None, phone=None):
    """Look a customer up by normalized email first, then phone."""
    email_lower = normalize_email(email)
    phone_e164 = normalize_phone(phone)

    end_user = None
    if email_lower:
        end_user = EndUser.query.filter_by(email_lower=email_lower).first()
    if not end_user and phone_e164:
        end_user = EndUser.query.filter_by(phone_e164=phone_e164).first()
    return end_user


def find_or_create_end_user(email=None, phone=None, name=None, pin=None):
    """
    Resolve an email/phone to an end user, creating one when unknown.

    Returns:
        (end_user, is_new)
    """
    email_lower = normalize_email(email)
    phone_e164 = normalize_phone(phone)
    if not email_lower and not phone_e164:
        raise ValidationError('Email or phone is required')

    end_user = find_end_user(email_lower, phone_e164)
    if end_user:
        return end_user, False

    end_user = EndUser(
        email=(email or '').strip() or None,
        phone=(phone or '').strip() or None,
        email_lower=email_lower,
        phone_e164=phone_e164,
        name=(name or '').strip()[:100] or None,
    )
    if pin:
        end_user.set_pin(pin)
    db.session.add(end_user)
    try:
        db.session.commit()
    except IntegrityError:
        # Created concurrently by another request
        db.session.rollback()
        end_user = find_end_user(email_lower, phone_e164)
        if not end_user:
            raise
        return end_user, False
    return end_user, True


def find_merchant_client(merchant_id, end_user_id):
    return MerchantClient.query.filter_by(merchant_id=merchant_id, end_user_id=end_user_id).first()


def find_or_create_merchant_client(merchant_id, end_user_id):
    mc = find_merchant_client(merchant_id, end_user_id)
    if mc:
        return mc, False

    mc = MerchantClient(
        merchant_id=merchant_id,
        end_user_id=end_user_id,
        points_balance=0,
        total_spent=0,
        visit_count=0,
    )
    db.session.add(mc)
    db.session.flush()
    return mc, True


def customer_snapshot(merchant, end_user):
    """Customer card as staff see it at the counter."""
    mc = find_merchant_client(merchant.id, end_user.id)
    balance = int(mc.points_balance or 0) if mc else 0
    threshold = int(merchant.points_for_reward or 0)
    return {
        'endUserId': end_user.id,
        'merchantClientId': mc.id if mc else None,
        'name': end_user.display_name,
        'email': end_user.email,
        'phone': end_user.phone,
        'pointsBalance': balance,
        'visitCount': int(mc.visit_count or 0) if mc else 0,
        'isNew': mc is None,
        'isBlocked': bool(end_user.is_blocked or (mc.is_blocked if mc else False)),
        'hasPin': end_user.has_pin,
        'rewardThreshold': threshold,
        'rewardDescription': merchant.reward_description,
        'canRedeem': threshold > 0 and balance >= threshold,
    }


def credit_points(merchant, end_user, amount, staff_id=None, notes=None,
                  idempotency_key=None, source='manual'):
    """
    Credit points for `amount` spent.

    Returns:
        dict(merchant_client, transaction, is_new_relation, idempotent)
    """
    try:
        amount = Decimal(str(amount))
    except Exception:
        raise ValidationError('Invalid amount')
    if not amount.is_finite() or amount <= 0:
        raise ValidationError('Invalid amount')

    if idempotency_key:
        existing = PointTransaction.query.filter_by(
            merchant_id=merchant.id, idempotency_key=idempotency_key
        ).first()
        if existing:
            return {
                'merchant_client': existing.merchant_client,
                'transaction': existing,
                'is_new_relation': False,
                'idempotent': True,
            }

    if end_user.is_blocked:
        raise CustomerBlockedError()

    points_delta = int(math.floor(amount * Decimal(str(merchant.points_per_euro or 1))))

    try:
        mc, is_new_relation = find_or_create_merchant_client(merchant.id, end_user.id)
        if mc.is_blocked:
            raise CustomerBlockedError('This customer is blocked at your shop')

        tx = PointTransaction(
            merchant_id=merchant.id,
            merchant_client_id=mc.id,
            user_id=staff_id,
            amount=amount,
            points_delta=points_delta,
            transaction_type='credit',
            source=source,
            idempotency_key=idempotency_key,
            notes=notes,
        )
        db.session.add(tx)

        mc.points_balance = int(mc.points_balance or 0) + points_delta
        mc.total_spent = Decimal(str(mc.total_spent or 0)) + amount
        mc.visit_count = int(mc.visit_count or 0) + 1
        mc.last_visit = datetime.now()

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return {
        'merchant_client': mc,
        'transaction': tx,
        'is_new_relation': is_new_relation,
        'idempotent': False,
    }


def redeem_reward(merchant, merchant_client_id, staff_id=None, notes=None):
    """
    Debit the merchant's reward threshold from a customer's balance.

    Returns:
        dict(merchant_client, transaction)
    """
    mc = MerchantClient.query.filter_by(id=merchant_client_id, merchant_id=merchant.id).first()
    if not mc:
        raise NotFoundError('Client not found')
    if mc.is_blocked or (mc.end_user and mc.end_user.is_blocked):
        raise CustomerBlockedError()

    cost = int(merchant.points_for_reward or 0)
    balance = int(mc.points_balance or 0)
    if cost <= 0:
        raise ValidationError('This merchant has no reward configured')
    if balance < cost:
        raise InsufficientPointsError(f'Insufficient points balance ({balance}/{cost})')

    try:
        tx = PointTransaction(
            merchant_id=merchant.id,
            merchant_client_id=mc.id,
            user_id=staff_id,
            amount=None,
            points_delta=-cost,
            transaction_type='reward',
            source='manual',
            notes=notes or (f'Reward: {merchant.reward_description}' if merchant.reward_description else 'Reward'),
        )
        db.session.add(tx)
        mc.points_balance = balance - cost
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return {'merchant_client': mc, 'transaction': tx}
