"""
Database models package
"""
from .merchant import Merchant
from .user import User, ActivityLog, STAFF_ROLES
from .customer import EndUser, MerchantClient
from .transaction import PointTransaction

__all__ = [
    'Merchant',
    'User',
    'ActivityLog',
    'STAFF_ROLES',
    'EndUser',
    'MerchantClient',
    'PointTransaction',
]
