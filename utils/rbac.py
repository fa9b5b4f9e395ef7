"""Role-based access control helpers.

Staff tokens carry `role` ('owner', 'manager', 'cashier') and `merchant_id`
claims; customer tokens carry the role 'client'. These helpers standardize
authorization checks across routes.
"""

from __future__ import annotations

from functools import wraps

from flask import jsonify
from flask_jwt_extended import get_jwt, jwt_required

from extensions import db
from models import Merchant

STAFF_ROLES = ("owner", "manager", "cashier")
CLIENT_ROLE = "client"


def current_role() -> str:
    claims = get_jwt() or {}
    role = claims.get("role")
    return str(role or "").lower()


def current_merchant_id() -> int | None:
    claims = get_jwt() or {}
    try:
        return int(claims.get("merchant_id"))
    except (TypeError, ValueError):
        return None


def require_roles(*roles: str):
    """Decorator to require one of the allowed roles.

    Must be used with @jwt_required() on the route.
    """

    allowed = {str(r).lower() for r in roles if str(r).strip()}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            role = current_role()
            if role not in allowed:
                if allowed == {"owner"}:
                    msg = "Owner access required"
                else:
                    msg = "Access denied"
                return jsonify({"success": False, "message": msg}), 403
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def staff_required(*roles: str):
    """JWT check + staff role + active merchant, in one decorator.

    With no arguments any staff role is accepted. The merchant is re-read on
    every request so suspending it locks out tokens issued earlier.
    """

    allowed = roles or STAFF_ROLES

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            merchant_id = current_merchant_id()
            if merchant_id is None:
                return jsonify({"success": False, "message": "Access denied"}), 403
            merchant = db.session.get(Merchant, merchant_id)
            if merchant is None or not merchant.is_active:
                return jsonify({"success": False, "message": "Merchant account is not active"}), 403
            return fn(*args, **kwargs)

        return jwt_required()(require_roles(*allowed)(wrapper))

    return decorator


def client_required(fn):
    return jwt_required()(require_roles(CLIENT_ROLE)(fn))
