"""
Subscription lifecycle.

User-initiated operations (start_trial, cancel, reactivate) talk to Stripe
first and mirror the provider's answer locally. The transition functions
below them are driven by verified webhooks and by account actions; they
join the caller's transaction and do not commit.

    none -> trialing -> active <-> past_due -> canceled
"""
from datetime import datetime
from typing import Optional

from flask import current_app

from paysync.billing import catalog, provider
from paysync.billing.events import SubscriptionUpdated, subscription_periods
from paysync.billing.provider import field, ref
from paysync.errors import AlreadySubscribed, NotFound, PaymentMethodRequired
from paysync.extensions import db
from paysync.models import Subscription
from paysync.models.subscription import (
    STATUS_ACTIVE,
    STATUS_CANCELED,
    STATUS_PAST_DUE,
    STATUS_TRIALING,
)
from paysync.services import audit, identity, instruments
from paysync.services.persistence import upsert
from paysync.utils.helpers import as_utc, from_unix, isoformat, utcnow


def get_subscription(account_id: int) -> Optional[Subscription]:
    return Subscription.query.filter_by(account_id=account_id).one_or_none()


def by_provider_id(provider_subscription_id: Optional[str]) -> Optional[Subscription]:
    if not provider_subscription_id:
        return None
    return Subscription.query.filter_by(provider_subscription_id=provider_subscription_id).one_or_none()


def _live_subscription(account_id: int) -> Subscription:
    sub = get_subscription(account_id)
    if sub is None or sub.is_terminal:
        raise NotFound("No active subscription", account_id=account_id)
    return sub


# -------------------------------------------------------------------------
# User-initiated
# -------------------------------------------------------------------------
def start_trial(account_id: int, plan_key: str) -> Subscription:
    """
    Start a trial on `plan_key` using the account's default card.

    Not safe to retry blindly after a ProviderUnavailable: check
    get_subscription() first. The AlreadySubscribed check is the only
    re-entrancy guard.
    """
    if not instruments.has_instrument(account_id):
        raise PaymentMethodRequired("Add a payment method to start a trial")

    existing = get_subscription(account_id)
    if existing is not None and not existing.is_terminal:
        raise AlreadySubscribed(
            "Account already has a subscription",
            status=existing.status,
            plan=existing.plan_key,
        )

    plan, price_id = catalog.resolve_plan(plan_key)
    customer_id = identity.ensure_identity(account_id)
    default = instruments.default_instrument(account_id)
    default_ref = default.provider_instrument_id if default else None

    params = {
        "customer": customer_id,
        "items": [{"price": price_id}],
        "trial_period_days": plan.trial_days,
        "trial_settings": {"end_behavior": {"missing_payment_method": "cancel"}},
        "payment_settings": {"save_default_payment_method": "on_subscription"},
        "metadata": {"account_id": str(account_id), "plan": plan.key},
    }
    if default_ref:
        params["default_payment_method"] = default_ref

    # Keyed on the row being replaced so a re-subscribe after cancel is a new request
    previous = existing.provider_subscription_id if existing else "none"
    with provider.provider_call("subscriptions.create", mutating=True, account_id=account_id, plan=plan.key):
        remote = provider.client().subscriptions.create(
            params=params,
            options={"idempotency_key": provider.make_idempotency_key("trial", account_id, plan.key, previous)},
        )

    period_start, period_end = subscription_periods(remote)
    now = utcnow()
    upsert(
        Subscription,
        {
            "account_id": account_id,
            "provider_subscription_id": remote.id,
            "provider_customer_id": customer_id,
            "provider_instrument_id": ref(field(remote, "default_payment_method")) or default_ref,
            "plan_key": plan.key,
            "status": field(remote, "status") or STATUS_TRIALING,
            "trial_start": from_unix(field(remote, "trial_start")),
            "trial_end": from_unix(field(remote, "trial_end")),
            "current_period_start": period_start,
            "current_period_end": period_end,
            "cancel_at_period_end": bool(field(remote, "cancel_at_period_end")),
            "canceled_at": None,
            "provider_event_at": None,
            "updated_at": now,
        },
        conflict_on=["account_id"],
        update=[
            "provider_subscription_id", "provider_customer_id", "provider_instrument_id",
            "plan_key", "status", "trial_start", "trial_end",
            "current_period_start", "current_period_end",
            "cancel_at_period_end", "canceled_at", "provider_event_at", "updated_at",
        ],
    )

    trial_end = from_unix(field(remote, "trial_end"))
    audit.record(
        event_key=f"trial_start_{remote.id}",
        event_type="subscription.trial_started",
        account_id=account_id,
        provider_customer_id=customer_id,
        provider_subscription_id=remote.id,
        amount_cents=0,
        description=f"Trial started on {plan.key} ({plan.trial_days} days)",
        status="succeeded",
        metadata={"plan": plan.key, "trial_days": plan.trial_days, "trial_end": isoformat(trial_end)},
    )
    db.session.commit()

    current_app.logger.info(
        "billing.subscription.trial_started",
        extra={"account_id": account_id, "plan": plan.key, "provider_subscription_id": remote.id},
    )
    sub = get_subscription(account_id)
    db.session.refresh(sub)
    return sub


def _set_cancel_at_period_end(account_id: int, value: bool) -> Subscription:
    sub = _live_subscription(account_id)
    with provider.provider_call("subscriptions.update", mutating=True, account_id=account_id):
        remote = provider.client().subscriptions.update(
            sub.provider_subscription_id,
            params={"cancel_at_period_end": value},
        )
    # Mirror what the provider says, not what we asked for
    sub.cancel_at_period_end = bool(field(remote, "cancel_at_period_end", value))
    db.session.commit()
    current_app.logger.info(
        "billing.subscription.cancel_flag_set",
        extra={"account_id": account_id, "cancel_at_period_end": sub.cancel_at_period_end},
    )
    return sub


def cancel(account_id: int) -> Subscription:
    """Cancel at period end; access continues until then."""
    return _set_cancel_at_period_end(account_id, True)


def reactivate(account_id: int) -> Subscription:
    return _set_cancel_at_period_end(account_id, False)


# -------------------------------------------------------------------------
# Provider-driven transitions (no commit)
# -------------------------------------------------------------------------
def _is_stale(sub: Subscription, event_at: Optional[datetime]) -> bool:
    if not current_app.config.get("WEBHOOK_ENFORCE_EVENT_ORDER", True):
        return False
    last = as_utc(sub.provider_event_at)
    return bool(event_at and last and event_at < last)


def _touch(sub: Subscription, event_at: Optional[datetime]) -> None:
    if event_at and (sub.provider_event_at is None or event_at > as_utc(sub.provider_event_at)):
        sub.provider_event_at = event_at


def _log_skip(event: str, sub: Subscription, **extra) -> None:
    current_app.logger.info(
        event,
        extra={"provider_subscription_id": sub.provider_subscription_id, "status": sub.status, **extra},
    )


def apply_provider_update(evt: SubscriptionUpdated) -> bool:
    """Copy the provider's view of the subscription. Returns True if applied."""
    sub = by_provider_id(evt.subscription_id)
    if sub is None:
        current_app.logger.info(
            "billing.subscription.unknown",
            extra={"provider_subscription_id": evt.subscription_id, "event_type": evt.type},
        )
        return False
    if sub.status == STATUS_CANCELED:
        _log_skip("billing.subscription.update_after_cancel", sub, incoming=evt.status)
        return False
    if _is_stale(sub, evt.created):
        _log_skip("billing.subscription.stale_event", sub, event_id=evt.event_id)
        return False

    sub.status = evt.status
    sub.cancel_at_period_end = evt.cancel_at_period_end
    sub.trial_start = evt.trial_start or sub.trial_start
    sub.trial_end = evt.trial_end or sub.trial_end
    sub.current_period_start = evt.current_period_start or sub.current_period_start
    sub.current_period_end = evt.current_period_end or sub.current_period_end
    if evt.canceled_at:
        sub.canceled_at = evt.canceled_at
    _touch(sub, evt.created)
    return True


def mark_invoice_paid(provider_subscription_id: Optional[str], event_at: Optional[datetime] = None) -> bool:
    """active/past_due -> active."""
    sub = by_provider_id(provider_subscription_id)
    if sub is None:
        return False
    if sub.status not in (STATUS_ACTIVE, STATUS_PAST_DUE):
        _log_skip("billing.subscription.invoice_paid_ignored", sub)
        return False
    if _is_stale(sub, event_at):
        _log_skip("billing.subscription.stale_event", sub)
        return False
    sub.status = STATUS_ACTIVE
    _touch(sub, event_at)
    return True


def mark_invoice_failed(provider_subscription_id: Optional[str], event_at: Optional[datetime] = None) -> bool:
    """active/trialing -> past_due; already past_due stays put."""
    sub = by_provider_id(provider_subscription_id)
    if sub is None:
        return False
    if sub.status not in (STATUS_ACTIVE, STATUS_TRIALING, STATUS_PAST_DUE):
        _log_skip("billing.subscription.invoice_failed_ignored", sub)
        return False
    if _is_stale(sub, event_at):
        _log_skip("billing.subscription.stale_event", sub)
        return False
    sub.status = STATUS_PAST_DUE
    _touch(sub, event_at)
    return True


def mark_deleted(
    provider_subscription_id: Optional[str],
    canceled_at: Optional[datetime] = None,
    event_at: Optional[datetime] = None,
) -> Optional[Subscription]:
    """
    Any state -> canceled. Returns the row only when it actually moved, so
    re-applying a deletion is a no-op for callers that cascade.
    """
    sub = by_provider_id(provider_subscription_id)
    if sub is None or sub.status == STATUS_CANCELED:
        return None
    sub.status = STATUS_CANCELED
    sub.cancel_at_period_end = False
    sub.canceled_at = canceled_at or event_at or utcnow()
    _touch(sub, event_at)
    return sub


def cancel_immediately(account_id: int) -> Optional[Subscription]:
    """
    Cancel any live subscription on the provider now (not at period end),
    then mark it canceled locally. None when there is nothing to cancel.
    """
    sub = get_subscription(account_id)
    if sub is None or sub.is_terminal:
        return None

    with provider.provider_call("subscriptions.cancel", mutating=True, account_id=account_id):
        remote = provider.client().subscriptions.cancel(sub.provider_subscription_id)

    sub.status = field(remote, "status") or STATUS_CANCELED
    sub.cancel_at_period_end = False
    sub.canceled_at = from_unix(field(remote, "canceled_at")) or utcnow()
    current_app.logger.info(
        "billing.subscription.canceled_immediately",
        extra={"account_id": account_id, "provider_subscription_id": sub.provider_subscription_id},
    )
    return sub
