"""
Customer recognition core and points services
"""
from .engine import RecognitionEngine, build_engine, get_engine
from .errors import (
    LoyaltyError,
    ValidationError,
    NotFoundError,
    IdentificationNotFound,
    CustomerBlockedError,
    InsufficientPointsError,
    RateLimitedError,
)

__all__ = [
    'RecognitionEngine',
    'build_engine',
    'get_engine',
    'LoyaltyError',
    'ValidationError',
    'NotFoundError',
    'IdentificationNotFound',
    'CustomerBlockedError',
    'InsufficientPointsError',
    'RateLimitedError',
]
