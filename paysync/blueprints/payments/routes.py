from flask import current_app, jsonify, request
from flask_login import current_user, login_required
from flask_wtf.csrf import generate_csrf

from . import bp
from paysync.errors import InvalidRequest
from paysync.extensions import limiter
from paysync.security.entitlements import entitlement_snapshot, require_active_subscription
from paysync.services import account_actions, audit, instruments, subscriptions
from paysync.utils.validators import clean_str, parse_positive_int


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ----- Session helpers -----
@bp.get("/csrf-token")
@login_required
def csrf_token():
    return jsonify({"csrfToken": generate_csrf()})


# ----- Payment methods -----
@bp.post("/setup-intent")
@limiter.limit("20/minute")
@login_required
def setup_intent():
    """Client secret for Stripe's card collection sheet."""
    secret = instruments.create_setup_intent(current_user.id)
    return jsonify({
        "clientSecret": secret,
        "publishableKey": current_app.config.get("STRIPE_PUBLISHABLE_KEY"),
    })


@bp.post("/methods/sync")
@login_required
def sync_methods():
    rows = instruments.sync_instruments(current_user.id)
    return jsonify({"methods": [r.to_dict() for r in rows]})


@bp.get("/methods")
@login_required
def list_methods():
    rows = instruments.list_instruments(current_user.id)
    return jsonify({"methods": [r.to_dict() for r in rows]})


@bp.delete("/methods/<int:instrument_id>")
@login_required
def remove_method(instrument_id: int):
    instruments.remove_instrument(current_user.id, instrument_id)
    rows = instruments.list_instruments(current_user.id)
    return jsonify({"ok": True, "methods": [r.to_dict() for r in rows]})


@bp.post("/methods/default")
@login_required
def set_default_method():
    data = _json_body()
    instrument_id = parse_positive_int(data.get("instrumentId", data.get("id")))
    if instrument_id is None:
        raise InvalidRequest("instrumentId is required")
    inst = instruments.set_default_instrument(current_user.id, instrument_id)
    return jsonify({"method": inst.to_dict()})


# ----- Subscription -----
@bp.post("/subscription/trial")
@limiter.limit("10/minute")
@login_required
def start_trial():
    plan = clean_str(_json_body().get("plan"), max_len=32)
    if not plan:
        raise InvalidRequest("plan is required")
    sub = subscriptions.start_trial(current_user.id, plan)
    return jsonify({"subscription": sub.to_dict()}), 201


@bp.get("/subscription")
@login_required
def get_subscription():
    sub = subscriptions.get_subscription(current_user.id)
    return jsonify({"subscription": sub.to_dict() if sub else None})


@bp.post("/subscription/cancel")
@login_required
def cancel_subscription():
    sub = subscriptions.cancel(current_user.id)
    return jsonify({"subscription": sub.to_dict()})


@bp.post("/subscription/reactivate")
@login_required
def reactivate_subscription():
    sub = subscriptions.reactivate(current_user.id)
    return jsonify({"subscription": sub.to_dict()})


# ----- Ledger / access -----
@bp.get("/audit-log")
@login_required
def audit_log():
    limit = parse_positive_int(request.args.get("limit"))
    cap = current_app.config.get("AUDIT_LOG_PAGE_SIZE", 100)
    entries = audit.entries_for_account(current_user.id, limit=min(limit or cap, cap))
    return jsonify({"entries": [e.to_dict() for e in entries]})


@bp.get("/entitlements")
@login_required
def entitlements():
    snap = entitlement_snapshot(current_user)
    snap["standing"] = account_actions.suspension_state(current_user.id)
    return jsonify(snap)


@bp.get("/features")
@login_required
@require_active_subscription
def features():
    """Feature keys for clients that only care about the gated surface."""
    return jsonify({"features": entitlement_snapshot(current_user)["features"]})


# ----- Self-service refund -----
@bp.post("/refunds")
@limiter.limit("10/minute")
@login_required
def request_refund():
    data = _json_body()
    payment_reference = clean_str(data.get("paymentIntentId"), max_len=64)
    if not payment_reference:
        raise InvalidRequest("paymentIntentId is required")
    amount = data.get("amountCents")
    amount_cents = parse_positive_int(amount)
    if amount is not None and amount_cents is None:
        raise InvalidRequest("amountCents must be a positive integer")

    row = account_actions.refund(
        current_user.id,
        payment_reference,
        amount_cents,
        clean_str(data.get("reason"), max_len=64),
        notes=clean_str(data.get("notes"), max_len=500),
        order_id=clean_str(data.get("orderId"), max_len=64),
        requested_by=current_user.id,
        idempotency_key=clean_str(request.headers.get("Idempotency-Key"), max_len=255),
    )
    return jsonify({"refund": row.to_dict()}), 201
