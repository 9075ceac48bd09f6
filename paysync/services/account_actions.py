import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app

from paysync.billing import provider
from paysync.billing.events import RefundUpdated
from paysync.billing.provider import field, ref
from paysync.errors import Forbidden, InvalidRequest, NotFound
from paysync.extensions import db
from paysync.models import Account, AccountAction, Refund
from paysync.models.account_action import (
    ACTION_BANNED,
    ACTION_PAYMENT_FAILED_LOCK,
    ACTION_PAYMENT_FAILED_RESOLVED,
    ACTION_SUSPENDED,
    ACTION_TYPES,
    ACTION_UNBANNED,
    ACTION_UNSUSPENDED,
    CASCADING_CANCEL_ACTIONS,
)
from paysync.services import audit, identity, subscriptions
from paysync.utils.helpers import as_utc, isoformat, utcnow

# Reasons Stripe accepts on a refund; anything else goes into metadata only
PROVIDER_REFUND_REASONS = frozenset({"duplicate", "fraudulent", "requested_by_customer"})


def append(
    account_id: int,
    action_type: str,
    *,
    reason: Optional[str] = None,
    performed_by: Optional[int] = None,
    expires_at: Optional[datetime] = None,
    metadata: Optional[Dict[str, Any]] = None,
    provider_subscription_id: Optional[str] = None,
) -> AccountAction:
    """Add the action row and its audit entry to the session. Does not commit."""
    action = AccountAction(
        account_id=account_id,
        action_type=action_type,
        reason=reason,
        performed_by=performed_by,
        expires_at=expires_at,
        meta=metadata or {},
    )
    db.session.add(action)
    db.session.flush()

    audit.record(
        event_key=f"account_action_{action.id}",
        event_type=f"account.{action_type}",
        account_id=account_id,
        provider_subscription_id=provider_subscription_id,
        description=reason,
        status="succeeded",
        metadata={"action_id": action.id, "performed_by": performed_by, **(metadata or {})},
    )
    current_app.logger.info(
        "billing.account_action.recorded",
        extra={"account_id": account_id, "action_type": action_type, "performed_by": performed_by},
    )
    return action


def record(
    account_id: int,
    action_type: str,
    reason: Optional[str] = None,
    performed_by: Optional[int] = None,
    expires_at: Optional[datetime] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AccountAction:
    """
    Append an administrative action for an account.

    suspended/unsuspended are mirrored onto the account row. trial_revoked,
    subscription_canceled and banned also cancel any live subscription on
    the provider immediately (not at period end) before anything is written
    locally. Authorization is the caller's job.
    """
    if action_type not in ACTION_TYPES:
        raise InvalidRequest(f"Unknown action type {action_type!r}", allowed=list(ACTION_TYPES))

    account = db.session.get(Account, account_id)
    if account is None:
        raise NotFound("Account not found", account_id=account_id)

    canceled = None
    if action_type in CASCADING_CANCEL_ACTIONS:
        canceled = subscriptions.cancel_immediately(account_id)

    if action_type == ACTION_SUSPENDED:
        account.is_suspended = True
        account.suspension_reason = reason
        account.suspended_until = expires_at
    elif action_type == ACTION_UNSUSPENDED:
        account.is_suspended = False
        account.suspension_reason = None
        account.suspended_until = None

    meta = dict(metadata or {})
    if canceled is not None:
        meta["canceled_subscription"] = canceled.provider_subscription_id

    action = append(
        account_id,
        action_type,
        reason=reason,
        performed_by=performed_by,
        expires_at=expires_at,
        metadata=meta,
        provider_subscription_id=canceled.provider_subscription_id if canceled else None,
    )
    db.session.commit()
    return action


def list_actions(account_id: int, limit: int = 100) -> List[AccountAction]:
    return (
        AccountAction.query
        .filter_by(account_id=account_id)
        .order_by(AccountAction.created_at.desc(), AccountAction.id.desc())
        .limit(limit)
        .all()
    )


def _latest(account_id: int, types) -> Optional[AccountAction]:
    return (
        AccountAction.query
        .filter(AccountAction.account_id == account_id, AccountAction.action_type.in_(types))
        .order_by(AccountAction.created_at.desc(), AccountAction.id.desc())
        .first()
    )


def has_payment_lock(account_id: int) -> bool:
    """An outstanding payment_failed_lock not yet followed by a resolution."""
    last = _latest(account_id, (ACTION_PAYMENT_FAILED_LOCK, ACTION_PAYMENT_FAILED_RESOLVED))
    return bool(last and last.action_type == ACTION_PAYMENT_FAILED_LOCK)


def suspension_state(account_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Projection of the action log; the flags on Account are a cached copy of this."""
    now = now or utcnow()
    suspension = _latest(account_id, (ACTION_SUSPENDED, ACTION_UNSUSPENDED))
    ban = _latest(account_id, (ACTION_BANNED, ACTION_UNBANNED))

    suspended = bool(suspension and suspension.action_type == ACTION_SUSPENDED)
    until = as_utc(suspension.expires_at) if suspended else None
    if suspended and until is not None and until <= now:
        suspended = False

    return {
        "suspended": suspended,
        "suspendedUntil": isoformat(until) if suspended else None,
        "reason": suspension.reason if suspended else None,
        "banned": bool(ban and ban.action_type == ACTION_BANNED),
        "paymentLocked": has_payment_lock(account_id),
    }


# -------------------------------------------------------------------------
# Refunds
# -------------------------------------------------------------------------
def refund(
    account_id: int,
    payment_reference: str,
    amount_cents: Optional[int] = None,
    reason: Optional[str] = None,
    *,
    notes: Optional[str] = None,
    order_id: Optional[str] = None,
    subscription_ref: Optional[str] = None,
    requested_by: Optional[int] = None,
    idempotency_key: Optional[str] = None,
) -> Refund:
    """
    Refund a payment (full when amount_cents is None) and record it.
    The ledger entry is negative; the Refund row holds the positive amount.

    idempotency_key identifies one refund request. Retrying with the same
    key returns the refund already recorded; without one every call is a
    new refund.
    """
    if not payment_reference:
        raise InvalidRequest("payment reference is required")
    if amount_cents is not None and amount_cents <= 0:
        raise InvalidRequest("amount must be a positive number of cents")

    stripe = provider.client()
    with provider.provider_call("payment_intents.retrieve", account_id=account_id):
        intent = stripe.payment_intents.retrieve(payment_reference)

    charge_id = ref(field(intent, "latest_charge"))
    if not charge_id:
        raise NotFound("Payment has no charge to refund", payment_reference=payment_reference)

    ident = identity.get_identity(account_id)
    owner = ref(field(intent, "customer"))
    if ident is None or owner != ident.provider_customer_id:
        raise Forbidden("Payment does not belong to this account")

    params: Dict[str, Any] = {
        "payment_intent": intent.id,
        "metadata": {"account_id": str(account_id), "order_id": order_id or ""},
    }
    if amount_cents is not None:
        params["amount"] = amount_cents
    if reason in PROVIDER_REFUND_REASONS:
        params["reason"] = reason

    with provider.provider_call("refunds.create", mutating=True, account_id=account_id):
        remote = stripe.refunds.create(
            params=params,
            options={"idempotency_key": provider.make_idempotency_key(
                "refund", account_id, intent.id, idempotency_key or uuid.uuid4().hex,
            )},
        )

    existing = Refund.query.filter_by(provider_refund_id=remote.id).one_or_none()
    if existing is not None:
        # Provider replayed a refund we already recorded
        current_app.logger.info(
            "billing.refund.replayed",
            extra={"account_id": account_id, "provider_refund_id": remote.id},
        )
        return existing

    amount = field(remote, "amount") or amount_cents or 0
    currency = (field(remote, "currency") or field(intent, "currency") or "usd").lower()
    status = field(remote, "status") or "pending"

    row = Refund(
        account_id=account_id,
        order_id=order_id,
        subscription_ref=subscription_ref,
        provider_refund_id=remote.id,
        provider_payment_intent_id=intent.id,
        amount_cents=amount,
        currency=currency,
        reason=reason,
        status=status,
        notes=notes,
        requested_by=requested_by,
        processed_at=utcnow() if status == "succeeded" else None,
    )
    db.session.add(row)
    audit.record(
        event_key=f"refund_{remote.id}",
        event_type="refund.created",
        account_id=account_id,
        provider_customer_id=owner,
        provider_payment_intent_id=intent.id,
        amount_cents=-amount,
        currency=currency,
        description=reason or "Refund",
        status=status,
        metadata={"charge": charge_id, "order_id": order_id, "requested_by": requested_by},
    )
    db.session.commit()

    current_app.logger.info(
        "billing.refund.created",
        extra={"account_id": account_id, "provider_refund_id": remote.id, "amount_cents": amount},
    )
    return row


def apply_refund_update(evt: RefundUpdated) -> bool:
    """Webhook status sync for a refund we created. Does not commit."""
    row = Refund.query.filter_by(provider_refund_id=evt.refund_id).one_or_none()
    if row is None or row.status == evt.status:
        return False
    row.status = evt.status
    if evt.status == "succeeded" and row.processed_at is None:
        row.processed_at = evt.created or utcnow()
    return True
