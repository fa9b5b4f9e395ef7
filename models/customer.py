"""
Customer models: the global end user and its per-merchant loyalty card
"""
import secrets
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from extensions import db


class EndUser(db.Model):
    """Loyalty card holder, identified by email and/or phone across merchants"""
    __tablename__ = 'end_users'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    # Raw values as typed by the customer (display only)
    email = db.Column(db.String(200), nullable=True)
    phone = db.Column(db.String(30), nullable=True)

    # Normalized values used for lookups
    email_lower = db.Column(db.String(200), unique=True, nullable=True, index=True)
    phone_e164 = db.Column(db.String(20), unique=True, nullable=True, index=True)

    name = db.Column(db.String(100), nullable=True)
    pin_hash = db.Column(db.String(255), nullable=True)

    # Personal static QR code shown in the customer app
    qr_token = db.Column(db.String(32), unique=True, nullable=False, index=True)

    is_blocked = db.Column(db.Boolean, default=False, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    cards = db.relationship('MerchantClient', backref='end_user', lazy='dynamic')

    def __init__(self, **kwargs):
        self.qr_token = kwargs.pop('qr_token', None) or self.generate_qr_token()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    @staticmethod
    def generate_qr_token():
        return secrets.token_urlsafe(8)

    def set_pin(self, pin):
        """Hash and set the 4-digit PIN"""
        if pin and len(pin) == 4 and pin.isdigit():
            self.pin_hash = generate_password_hash(pin)
        else:
            raise ValueError("PIN must be a 4-digit number")

    def check_pin(self, pin):
        """Verify PIN"""
        if self.pin_hash:
            return check_password_hash(self.pin_hash, pin or '')
        return False

    @property
    def has_pin(self):
        return self.pin_hash is not None

    @property
    def display_name(self):
        if self.name and self.name.strip():
            return self.name.strip()
        if self.email:
            return self.email.split('@', 1)[0]
        return self.phone

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'has_pin': self.has_pin,
            'is_blocked': self.is_blocked,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<EndUser {self.email_lower or self.phone_e164}>'


class MerchantClient(db.Model):
    """Loyalty card of one end user at one merchant"""
    __tablename__ = 'merchant_clients'
    __table_args__ = (
        db.UniqueConstraint('merchant_id', 'end_user_id', name='uq_merchant_client'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id', ondelete='CASCADE'), nullable=False, index=True)
    end_user_id = db.Column(db.Integer, db.ForeignKey('end_users.id', ondelete='CASCADE'), nullable=False, index=True)

    # Loyalty
    points_balance = db.Column(db.Integer, default=0, nullable=False)
    total_spent = db.Column(db.Numeric(12, 2), default=0, nullable=False)
    visit_count = db.Column(db.Integer, default=0, nullable=False)
    last_visit = db.Column(db.DateTime, nullable=True)

    # Status
    is_blocked = db.Column(db.Boolean, default=False, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    transactions = db.relationship('PointTransaction', backref='merchant_client', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'merchant_id': self.merchant_id,
            'end_user_id': self.end_user_id,
            'points_balance': int(self.points_balance or 0),
            'total_spent': float(self.total_spent) if self.total_spent else 0,
            'visit_count': int(self.visit_count or 0),
            'last_visit': self.last_visit.isoformat() if self.last_visit else None,
            'is_blocked': self.is_blocked,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<MerchantClient merchant={self.merchant_id} end_user={self.end_user_id}>'
