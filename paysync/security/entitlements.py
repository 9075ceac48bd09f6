from functools import wraps
from typing import Callable, Dict, Any
from flask_login import current_user
from paysync.billing.catalog import resolve_entitlements
from paysync.models import Subscription

def entitlement_snapshot(account) -> Dict[str, Any]:
    """
    Policy:
      - Entitled: subscription status in {"active","trialing"} and the account is not suspended.
      - Blocked: past_due, incomplete, incomplete_expired, unpaid, canceled, no sub, or suspended.
    """
    sub = Subscription.query.filter_by(account_id=account.id).one_or_none()
    suspended = account.suspension_active()
    entitled = bool(sub and sub.is_entitled and not suspended)
    return {
        "entitled": entitled,
        "plan": sub.plan_key if sub else None,
        "status": sub.status if sub else None,
        "suspended": suspended,
        "features": resolve_entitlements(sub.plan_key) if entitled else [],
    }

def require_active_subscription(fn: Callable):
    """JSON 403 `entitlement_required` unless the current account is entitled."""
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not getattr(current_user, "is_authenticated", False):
            return {"error": "unauthorized", "code": 401}, 401
        snap = entitlement_snapshot(current_user)
        if not snap["entitled"]:
            missing = "account_in_good_standing" if snap["suspended"] else "active_subscription"
            return {"error": "entitlement_required", "missing": missing}, 403
        return fn(*args, **kwargs)
    return _wrap
