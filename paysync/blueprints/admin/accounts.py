from flask import current_app, jsonify, request
from flask_login import current_user

from . import bp
from paysync.errors import InvalidRequest, NotFound
from paysync.extensions import db, limiter
from paysync.models import Account
from paysync.services import account_actions, audit
from paysync.utils.validators import clean_str, parse_iso_datetime, parse_positive_int


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _account_id(data: dict) -> int:
    account_id = parse_positive_int(data.get("accountId"))
    if account_id is None:
        raise InvalidRequest("accountId is required")
    return account_id


@bp.post("/account-actions")
def record_action():
    data = _json_body()
    account_id = _account_id(data)
    action_type = clean_str(data.get("actionType"), max_len=40)
    if not action_type:
        raise InvalidRequest("actionType is required")

    expires_raw = data.get("expiresAt")
    expires_at = parse_iso_datetime(expires_raw)
    if expires_raw and expires_at is None:
        raise InvalidRequest("expiresAt must be an ISO-8601 timestamp")

    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise InvalidRequest("metadata must be an object")

    action = account_actions.record(
        account_id,
        action_type,
        reason=clean_str(data.get("reason")),
        performed_by=current_user.id,
        expires_at=expires_at,
        metadata=metadata,
    )
    return jsonify({"action": action.to_dict()}), 201


@bp.get("/accounts/<int:account_id>/actions")
def list_actions(account_id: int):
    if db.session.get(Account, account_id) is None:
        raise NotFound("Account not found", account_id=account_id)
    rows = account_actions.list_actions(account_id)
    return jsonify({
        "actions": [r.to_dict() for r in rows],
        "standing": account_actions.suspension_state(account_id),
    })


@bp.get("/accounts/<int:account_id>/audit-log")
def account_audit_log(account_id: int):
    if db.session.get(Account, account_id) is None:
        raise NotFound("Account not found", account_id=account_id)
    limit = parse_positive_int(request.args.get("limit"))
    cap = current_app.config.get("AUDIT_LOG_PAGE_SIZE", 100)
    entries = audit.entries_for_account(account_id, limit=min(limit or cap, cap))
    return jsonify({"entries": [e.to_dict() for e in entries]})


@bp.post("/refunds")
@limiter.limit("30/minute")
def issue_refund():
    data = _json_body()
    account_id = _account_id(data)
    payment_reference = clean_str(data.get("paymentIntentId"), max_len=64)
    if not payment_reference:
        raise InvalidRequest("paymentIntentId is required")
    amount = data.get("amountCents")
    amount_cents = parse_positive_int(amount)
    if amount is not None and amount_cents is None:
        raise InvalidRequest("amountCents must be a positive integer")

    row = account_actions.refund(
        account_id,
        payment_reference,
        amount_cents,
        clean_str(data.get("reason"), max_len=64),
        notes=clean_str(data.get("notes"), max_len=500),
        order_id=clean_str(data.get("orderId"), max_len=64),
        subscription_ref=clean_str(data.get("subscriptionId"), max_len=64),
        requested_by=current_user.id,
        idempotency_key=clean_str(request.headers.get("Idempotency-Key"), max_len=255),
    )
    return jsonify({"refund": row.to_dict()}), 201
