"""
Typed failures raised by the recognition core and the points collaborator.

Route handlers turn them into JSON responses using `status_code` and
`error_code`.
"""


class LoyaltyError(Exception):
    """Base class for expected, user-facing failures"""
    status_code = 400
    error_code = 'loyalty_error'

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self):
        return {
            'success': False,
            'message': self.message,
            'error': self.error_code,
        }


class ValidationError(LoyaltyError):
    """Invalid request"""
    status_code = 400
    error_code = 'validation_error'


class NotFoundError(LoyaltyError):
    """Not found"""
    status_code = 404
    error_code = 'not_found'


class IdentificationNotFound(NotFoundError):
    """Identification not found or already handled"""
    error_code = 'identification_not_found'


class CustomerBlockedError(LoyaltyError):
    """This customer is blocked"""
    status_code = 403
    error_code = 'customer_blocked'


class InsufficientPointsError(LoyaltyError):
    """Insufficient points balance"""
    status_code = 400
    error_code = 'insufficient_points'


class RateLimitedError(LoyaltyError):
    """Too many attempts"""
    status_code = 429
    error_code = 'rate_limited'

    def __init__(self, minutes_remaining, message=None):
        self.minutes_remaining = int(minutes_remaining)
        super().__init__(
            message or f'Too many attempts. Try again in {self.minutes_remaining} minute(s).'
        )

    def to_dict(self):
        data = super().to_dict()
        data['minutesRemaining'] = self.minutes_remaining
        return data
