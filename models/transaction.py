"""
Point transaction ledger
"""
from datetime import datetime
from extensions import db


class PointTransaction(db.Model):
    """One ledger entry: credit, reward or manual adjustment"""
    __tablename__ = 'point_transactions'
    __table_args__ = (
        db.UniqueConstraint('merchant_id', 'idempotency_key', name='uq_point_tx_idempotency'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id', ondelete='CASCADE'), nullable=False, index=True)
    merchant_client_id = db.Column(db.Integer, db.ForeignKey('merchant_clients.id', ondelete='CASCADE'), nullable=False, index=True)

    # Staff member who recorded it (optional)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    # Amount spent (credits only)
    amount = db.Column(db.Numeric(12, 2), nullable=True)
    points_delta = db.Column(db.Integer, nullable=False)

    # Type: credit, reward, adjustment
    transaction_type = db.Column(db.String(20), nullable=False)

    # Source: manual, qr
    source = db.Column(db.String(20), nullable=False, default='manual')

    idempotency_key = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'merchant_id': self.merchant_id,
            'merchant_client_id': self.merchant_client_id,
            'user_id': self.user_id,
            'amount': float(self.amount) if self.amount is not None else None,
            'points_delta': self.points_delta,
            'transaction_type': self.transaction_type,
            'source': self.source,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<PointTransaction {self.transaction_type} {self.points_delta:+d}>'
