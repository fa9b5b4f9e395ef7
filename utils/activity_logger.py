"""Activity logging helpers.

Best-effort audit trail: failures should not break the main request.
"""

from __future__ import annotations

from typing import Any, Optional

from flask import current_app, has_request_context, request

from extensions import db


def client_ip() -> str:
    """Peer address of the request.

    Forwarded headers are resolved by ProxyFix for the configured number of
    trusted proxies only, so a client cannot pick its own address.
    """
    if not has_request_context():
        return 'unknown'
    return request.remote_addr or 'unknown'


def log_activity(
    *,
    merchant_id: Optional[int],
    user_id: Optional[int],
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    try:
        from models.user import ActivityLog

        log = ActivityLog(
            merchant_id=merchant_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            ip_address=(client_ip() if has_request_context() else None),
            user_agent=(
                request.user_agent.string[:255]
                if has_request_context() and request.user_agent
                else None
            ),
        )
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        try:
            db.session.rollback()
        except Exception:
            pass
        current_app.logger.warning(f"⚠️ Activity log skipped ({action}): {e}")
