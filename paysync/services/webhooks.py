"""
Stripe webhook ingestion.

    verify signature (raw bytes) -> parse into a variant -> dedup on the
    audit ledger -> apply -> audit insert -> commit

Every attempt leaves a WebhookDelivery row. Only a bad signature is
rejected; anything that goes wrong after verification is logged, stored
as a failed delivery and acknowledged so Stripe does not retry forever.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Optional
import hashlib
import json

import stripe
from flask import current_app

from paysync.billing import events as ev
from paysync.errors import ConfigurationError, SignatureInvalid
from paysync.extensions import db
from paysync.models import Refund, WebhookDelivery
from paysync.models.account_action import (
    ACTION_PAYMENT_FAILED_LOCK,
    ACTION_PAYMENT_FAILED_RESOLVED,
    ACTION_SUBSCRIPTION_CANCELED,
)
from paysync.models.webhook_delivery import (
    OUTCOME_APPLIED,
    OUTCOME_DUPLICATE,
    OUTCOME_FAILED,
    OUTCOME_IGNORED,
    OUTCOME_REJECTED,
)
from paysync.observability import alert_operators
from paysync.services import account_actions, audit, identity, instruments, subscriptions
from paysync.utils.helpers import utcnow


@dataclass(frozen=True)
class WebhookResult:
    outcome: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": True, "outcome": self.outcome, "eventId": self.event_id}


def _log_delivery(event_id: str, event_type: str, outcome: str, *, notes=None, payload=None, signature_valid=True) -> None:
    db.session.add(WebhookDelivery(
        provider_event_id=event_id,
        type=event_type,
        signature_valid=signature_valid,
        outcome=outcome,
        notes=notes,
        payload=payload or {},
    ))
    db.session.commit()
    current_app.logger.info(
        "billing.webhook.delivery",
        extra={"event_id": event_id, "event_type": event_type, "outcome": outcome, "notes": notes},
    )


# -------------------------------------------------------------------------
# Signature
# -------------------------------------------------------------------------
def _verify(raw: bytes, sig_header: str) -> None:
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
    try:
        stripe.WebhookSignature.verify_header(raw.decode("utf-8"), sig_header or "", secret)
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
        _reject(raw, exc)
        raise SignatureInvalid("Webhook signature verification failed") from exc


def _reject(raw: bytes, exc: Exception) -> None:
    # Nothing from the body is trusted; key the attempt by a digest
    digest = hashlib.sha256(raw).hexdigest()[:32]
    _log_delivery(
        f"invalid:{digest}",
        "signature_invalid",
        OUTCOME_REJECTED,
        notes=type(exc).__name__,
        signature_valid=False,
    )
    current_app.logger.warning("billing.webhook.signature_invalid", extra={"digest": digest})

    cfg = current_app.config
    threshold = int(cfg.get("WEBHOOK_SIGNATURE_ALERT_THRESHOLD", 5))
    window = timedelta(minutes=int(cfg.get("WEBHOOK_SIGNATURE_ALERT_WINDOW_MINUTES", 15)))
    recent = WebhookDelivery.query.filter(
        WebhookDelivery.outcome == OUTCOME_REJECTED,
        WebhookDelivery.created_at >= utcnow() - window,
    ).count()
    # Once per `threshold` rejections, not on every one after it
    if threshold > 0 and recent % threshold == 0:
        current_app.logger.error(
            "billing.webhook.signature_failures_persisting",
            extra={"count": recent, "window_minutes": int(window.total_seconds() // 60)},
        )
        alert_operators("Stripe webhook signature failures persisting", count=recent)


# -------------------------------------------------------------------------
# Handlers: apply side effects, return the audit row's fields
# -------------------------------------------------------------------------
def _account_for(sub, customer_id: Optional[str]) -> Optional[int]:
    if sub is not None:
        return sub.account_id
    return identity.account_for_customer(customer_id)


def _on_subscription_updated(e: ev.SubscriptionUpdated) -> Dict[str, Any]:
    applied = subscriptions.apply_provider_update(e)
    sub = subscriptions.by_provider_id(e.subscription_id)
    return {
        "account_id": _account_for(sub, e.customer_id),
        "provider_customer_id": e.customer_id,
        "provider_subscription_id": e.subscription_id,
        "status": e.status,
        "description": f"Subscription {e.status}",
        "metadata": {"applied": applied, "cancel_at_period_end": e.cancel_at_period_end},
    }


def _on_subscription_deleted(e: ev.SubscriptionDeleted) -> Dict[str, Any]:
    sub = subscriptions.mark_deleted(e.subscription_id, e.canceled_at, e.created)
    if sub is not None:
        account_actions.append(
            sub.account_id,
            ACTION_SUBSCRIPTION_CANCELED,
            reason="Subscription deleted by provider",
            metadata={"event_id": e.event_id},
            provider_subscription_id=e.subscription_id,
        )
    else:
        sub = subscriptions.by_provider_id(e.subscription_id)
    return {
        "account_id": _account_for(sub, e.customer_id),
        "provider_customer_id": e.customer_id,
        "provider_subscription_id": e.subscription_id,
        "status": "canceled",
        "description": "Subscription canceled",
    }


def _on_trial_will_end(e: ev.TrialWillEnd) -> Dict[str, Any]:
    sub = subscriptions.by_provider_id(e.subscription_id)
    current_app.logger.info(
        "billing.subscription.trial_will_end",
        extra={"provider_subscription_id": e.subscription_id, "trial_end": str(e.trial_end)},
    )
    return {
        "account_id": _account_for(sub, e.customer_id),
        "provider_customer_id": e.customer_id,
        "provider_subscription_id": e.subscription_id,
        "status": "succeeded",
        "description": "Trial ending soon",
    }


def _on_invoice_paid(e: ev.InvoicePaid) -> Dict[str, Any]:
    subscriptions.mark_invoice_paid(e.subscription_id, e.created)
    account_id = _account_for(subscriptions.by_provider_id(e.subscription_id), e.customer_id)
    if account_id and account_actions.has_payment_lock(account_id):
        account_actions.append(
            account_id,
            ACTION_PAYMENT_FAILED_RESOLVED,
            reason="Invoice paid",
            metadata={"invoice": e.invoice_id, "event_id": e.event_id},
            provider_subscription_id=e.subscription_id,
        )
    return {
        "account_id": account_id,
        "provider_customer_id": e.customer_id,
        "provider_subscription_id": e.subscription_id,
        "provider_invoice_id": e.invoice_id,
        "amount_cents": e.amount_cents,
        "currency": e.currency,
        "status": "succeeded",
        "description": "Invoice paid",
    }


def _on_invoice_failed(e: ev.InvoicePaymentFailed) -> Dict[str, Any]:
    subscriptions.mark_invoice_failed(e.subscription_id, e.created)
    account_id = _account_for(subscriptions.by_provider_id(e.subscription_id), e.customer_id)
    if account_id and not account_actions.has_payment_lock(account_id):
        account_actions.append(
            account_id,
            ACTION_PAYMENT_FAILED_LOCK,
            reason="Invoice payment failed",
            metadata={"invoice": e.invoice_id, "event_id": e.event_id},
            provider_subscription_id=e.subscription_id,
        )
    return {
        "account_id": account_id,
        "provider_customer_id": e.customer_id,
        "provider_subscription_id": e.subscription_id,
        "provider_invoice_id": e.invoice_id,
        "amount_cents": e.amount_cents,
        "currency": e.currency,
        "status": "failed",
        "description": "Invoice payment failed",
    }


def _on_instrument_upserted(e: ev.InstrumentUpserted) -> Dict[str, Any]:
    account_id = identity.account_for_customer(e.customer_id)
    if account_id:
        instruments.upsert_instrument(account_id, {
            "id": e.instrument_id,
            "card": {"brand": e.brand, "last4": e.last4, "exp_month": e.exp_month, "exp_year": e.exp_year},
        })
    return {
        "account_id": account_id,
        "provider_customer_id": e.customer_id,
        "status": "succeeded",
        "description": f"Payment method {e.instrument_id} updated",
    }


def _on_instrument_detached(e: ev.InstrumentDetached) -> Dict[str, Any]:
    account_id = instruments.forget_instrument(e.instrument_id)
    return {
        "account_id": account_id or identity.account_for_customer(e.previous_customer_id),
        "provider_customer_id": e.previous_customer_id,
        "status": "succeeded",
        "description": f"Payment method {e.instrument_id} detached",
    }


def _on_refund_updated(e: ev.RefundUpdated) -> Dict[str, Any]:
    account_actions.apply_refund_update(e)
    row = Refund.query.filter_by(provider_refund_id=e.refund_id).one_or_none()
    # Amount stays off this row: the refund was already booked when created
    return {
        "account_id": row.account_id if row else None,
        "provider_payment_intent_id": e.payment_intent_id,
        "currency": e.currency,
        "status": e.status,
        "description": f"Refund {e.refund_id} {e.status}",
        "metadata": {"refund": e.refund_id},
    }


_HANDLERS: Dict[type, Callable[[Any], Dict[str, Any]]] = {
    ev.SubscriptionUpdated: _on_subscription_updated,
    ev.SubscriptionDeleted: _on_subscription_deleted,
    ev.TrialWillEnd: _on_trial_will_end,
    ev.InvoicePaid: _on_invoice_paid,
    ev.InvoicePaymentFailed: _on_invoice_failed,
    ev.InstrumentUpserted: _on_instrument_upserted,
    ev.InstrumentDetached: _on_instrument_detached,
    ev.RefundUpdated: _on_refund_updated,
}


# -------------------------------------------------------------------------
# Entry point
# -------------------------------------------------------------------------
def handle(raw: bytes, sig_header: str) -> WebhookResult:
    """
    Process one delivery. Raises SignatureInvalid (reject) or
    ConfigurationError (no secret); every other failure is acknowledged.
    """
    _verify(raw, sig_header)

    try:
        payload = json.loads(raw)
        event = ev.parse_event(payload)
    except ValueError as exc:
        digest = hashlib.sha256(raw).hexdigest()[:32]
        _log_delivery(f"malformed:{digest}", "malformed", OUTCOME_FAILED, notes=f"malformed_event:{exc}"[:255])
        return WebhookResult(OUTCOME_FAILED)

    if audit.exists(event.event_id):
        _log_delivery(event.event_id, event.type, OUTCOME_DUPLICATE)
        return WebhookResult(OUTCOME_DUPLICATE, event.event_id, event.type)

    if isinstance(event, ev.Ignored):
        _log_delivery(event.event_id, event.type, OUTCOME_IGNORED)
        return WebhookResult(OUTCOME_IGNORED, event.event_id, event.type)

    handler = _HANDLERS[type(event)]
    try:
        facts = handler(event)
        written = audit.record(event_key=event.event_id, event_type=event.type, **facts)
        if not written:
            # A concurrent delivery of the same event won the audit insert
            db.session.rollback()
            _log_delivery(event.event_id, event.type, OUTCOME_DUPLICATE)
            return WebhookResult(OUTCOME_DUPLICATE, event.event_id, event.type)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(
            "billing.webhook.handler_error",
            extra={"event_id": event.event_id, "event_type": event.type},
        )
        _log_delivery(event.event_id, event.type, OUTCOME_FAILED, notes=f"handler_error:{type(exc).__name__}", payload=payload)
        return WebhookResult(OUTCOME_FAILED, event.event_id, event.type)

    _log_delivery(event.event_id, event.type, OUTCOME_APPLIED, payload=payload)
    return WebhookResult(OUTCOME_APPLIED, event.event_id, event.type)
