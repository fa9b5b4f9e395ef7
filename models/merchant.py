"""
Merchant model - a tenant business using the loyalty program
"""
import secrets
from datetime import datetime
from extensions import db


class Merchant(db.Model):
    """Merchant (tenant) with its loyalty rules"""
    __tablename__ = 'merchants'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    business_name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(150), unique=True, nullable=True)

    # Public token printed on the counter QR code
    qr_token = db.Column(db.String(64), unique=True, nullable=False, index=True)

    # Status: pending, active, suspended
    status = db.Column(db.String(20), nullable=False, default='active')

    # Loyalty rules
    points_per_euro = db.Column(db.Numeric(6, 2), nullable=False, default=1)
    points_for_reward = db.Column(db.Integer, nullable=False, default=100)
    reward_description = db.Column(db.String(255), nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    staff = db.relationship('User', backref='merchant', lazy='dynamic')
    clients = db.relationship('MerchantClient', backref='merchant', lazy='dynamic')

    def __init__(self, business_name, **kwargs):
        self.business_name = business_name
        self.qr_token = kwargs.pop('qr_token', None) or self.generate_qr_token()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    @staticmethod
    def generate_qr_token():
        return secrets.token_urlsafe(12)

    @classmethod
    def find_active_by_token(cls, token):
        token = (token or '').strip()
        if not token:
            return None
        merchant = cls.query.filter_by(qr_token=token).first()
        if not merchant or merchant.status != 'active':
            return None
        return merchant

    @property
    def is_active(self):
        return self.status == 'active'

    def to_dict(self):
        return {
            'id': self.id,
            'business_name': self.business_name,
            'email': self.email,
            'status': self.status,
            'points_per_euro': float(self.points_per_euro) if self.points_per_euro is not None else 1.0,
            'points_for_reward': self.points_for_reward,
            'reward_description': self.reward_description,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Merchant {self.business_name}>'
