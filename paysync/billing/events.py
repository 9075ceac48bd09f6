"""
Webhook events as a closed set of tagged variants.

``parse_event`` turns a verified Stripe event payload (plain dict) into
exactly one of the classes below. Event kinds the engine does not act on
become ``Ignored``; nothing downstream sniffs raw payload fields.
"""
from dataclasses import dataclass, field as dc_field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from paysync.billing.provider import field, ref
from paysync.utils.helpers import from_unix


@dataclass(frozen=True)
class WebhookEvent:
    event_id: str
    type: str
    created: Optional[datetime]


@dataclass(frozen=True)
class SubscriptionUpdated(WebhookEvent):
    subscription_id: str
    customer_id: Optional[str]
    status: str
    cancel_at_period_end: bool
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    canceled_at: Optional[datetime] = None


@dataclass(frozen=True)
class SubscriptionDeleted(WebhookEvent):
    subscription_id: str
    customer_id: Optional[str]
    canceled_at: Optional[datetime] = None


@dataclass(frozen=True)
class TrialWillEnd(WebhookEvent):
    subscription_id: str
    customer_id: Optional[str]
    trial_end: Optional[datetime] = None


@dataclass(frozen=True)
class InvoicePaid(WebhookEvent):
    invoice_id: str
    subscription_id: Optional[str]
    customer_id: Optional[str]
    amount_cents: Optional[int]
    currency: str = "usd"


@dataclass(frozen=True)
class InvoicePaymentFailed(WebhookEvent):
    invoice_id: str
    subscription_id: Optional[str]
    customer_id: Optional[str]
    amount_cents: Optional[int]
    currency: str = "usd"


@dataclass(frozen=True)
class InstrumentUpserted(WebhookEvent):
    instrument_id: str
    customer_id: Optional[str]
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None


@dataclass(frozen=True)
class InstrumentDetached(WebhookEvent):
    instrument_id: str
    previous_customer_id: Optional[str] = None


@dataclass(frozen=True)
class RefundUpdated(WebhookEvent):
    refund_id: str
    status: str
    amount_cents: Optional[int] = None
    currency: str = "usd"
    payment_intent_id: Optional[str] = None


@dataclass(frozen=True)
class Ignored(WebhookEvent):
    raw: Dict[str, Any] = dc_field(default_factory=dict, compare=False, repr=False)


def subscription_periods(sub) -> tuple:
    """
    Newer API versions moved the billing period onto subscription items;
    fall back to the first item when the top-level fields are absent.
    """
    start = field(sub, "current_period_start")
    end = field(sub, "current_period_end")
    if start is None or end is None:
        items = field(field(sub, "items"), "data") or []
        if items:
            start = start if start is not None else field(items[0], "current_period_start")
            end = end if end is not None else field(items[0], "current_period_end")
    return from_unix(start), from_unix(end)


def _invoice_subscription(inv: dict) -> Optional[str]:
    sub = ref(field(inv, "subscription"))
    if sub:
        return sub
    # 2025+ API versions: invoice.parent.subscription_details.subscription
    details = field(field(inv, "parent"), "subscription_details")
    return ref(field(details, "subscription"))


def _subscription_updated(base: dict, obj: dict) -> SubscriptionUpdated:
    start, end = subscription_periods(obj)
    return SubscriptionUpdated(
        **base,
        subscription_id=obj["id"],
        customer_id=ref(field(obj, "customer")),
        status=field(obj, "status") or "incomplete",
        cancel_at_period_end=bool(field(obj, "cancel_at_period_end")),
        trial_start=from_unix(field(obj, "trial_start")),
        trial_end=from_unix(field(obj, "trial_end")),
        current_period_start=start,
        current_period_end=end,
        canceled_at=from_unix(field(obj, "canceled_at")),
    )


def _subscription_deleted(base: dict, obj: dict) -> SubscriptionDeleted:
    return SubscriptionDeleted(
        **base,
        subscription_id=obj["id"],
        customer_id=ref(field(obj, "customer")),
        canceled_at=from_unix(field(obj, "canceled_at") or field(obj, "ended_at")),
    )


def _trial_will_end(base: dict, obj: dict) -> TrialWillEnd:
    return TrialWillEnd(
        **base,
        subscription_id=obj["id"],
        customer_id=ref(field(obj, "customer")),
        trial_end=from_unix(field(obj, "trial_end")),
    )


def _invoice_paid(base: dict, obj: dict) -> InvoicePaid:
    return InvoicePaid(
        **base,
        invoice_id=obj["id"],
        subscription_id=_invoice_subscription(obj),
        customer_id=ref(field(obj, "customer")),
        amount_cents=field(obj, "amount_paid"),
        currency=field(obj, "currency") or "usd",
    )


def _invoice_failed(base: dict, obj: dict) -> InvoicePaymentFailed:
    return InvoicePaymentFailed(
        **base,
        invoice_id=obj["id"],
        subscription_id=_invoice_subscription(obj),
        customer_id=ref(field(obj, "customer")),
        amount_cents=field(obj, "amount_due"),
        currency=field(obj, "currency") or "usd",
    )


def _instrument_upserted(base: dict, obj: dict) -> InstrumentUpserted:
    card = field(obj, "card") or {}
    return InstrumentUpserted(
        **base,
        instrument_id=obj["id"],
        customer_id=ref(field(obj, "customer")),
        brand=field(card, "brand"),
        last4=field(card, "last4"),
        exp_month=field(card, "exp_month"),
        exp_year=field(card, "exp_year"),
    )


def _instrument_detached(base: dict, obj: dict, previous: dict) -> InstrumentDetached:
    return InstrumentDetached(
        **base,
        instrument_id=obj["id"],
        previous_customer_id=ref(field(previous, "customer")),
    )


def _refund_updated(base: dict, obj: dict) -> RefundUpdated:
    return RefundUpdated(
        **base,
        refund_id=obj["id"],
        status=field(obj, "status") or "pending",
        amount_cents=field(obj, "amount"),
        currency=field(obj, "currency") or "usd",
        payment_intent_id=ref(field(obj, "payment_intent")),
    )


_PARSERS: Dict[str, Callable[..., WebhookEvent]] = {
    "customer.subscription.created": _subscription_updated,
    "customer.subscription.updated": _subscription_updated,
    "customer.subscription.deleted": _subscription_deleted,
    "customer.subscription.trial_will_end": _trial_will_end,
    "invoice.paid": _invoice_paid,
    "invoice.payment_succeeded": _invoice_paid,
    "invoice.payment_failed": _invoice_failed,
    "payment_method.attached": _instrument_upserted,
    "payment_method.updated": _instrument_upserted,
    "payment_method.automatically_updated": _instrument_upserted,
    "refund.updated": _refund_updated,
    "charge.refund.updated": _refund_updated,
}


class MalformedEvent(ValueError):
    pass


def parse_event(payload: dict) -> WebhookEvent:
    """Map a verified event payload onto its variant. Raises MalformedEvent."""
    if not isinstance(payload, dict):
        raise MalformedEvent("event payload is not an object")
    event_id = payload.get("id")
    event_type = payload.get("type")
    if not event_id or not event_type:
        raise MalformedEvent("event is missing id or type")

    base = {"event_id": event_id, "type": event_type, "created": from_unix(payload.get("created"))}
    data = payload.get("data") or {}
    obj = data.get("object") or {}

    parser = _PARSERS.get(event_type)
    if parser is None and event_type != "payment_method.detached":
        return Ignored(**base, raw=payload)

    try:
        if event_type == "payment_method.detached":
            return _instrument_detached(base, obj, data.get("previous_attributes") or {})
        return parser(base, obj)
    except (KeyError, TypeError) as exc:
        raise MalformedEvent(f"{event_type} payload is missing {exc}") from exc
