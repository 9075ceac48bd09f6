from datetime import datetime, timezone

import pytest
from paysync.billing import events as ev

from fakes import make_event

def test_subscription_updated_variant():
    event = make_event("customer.subscription.updated", {
        "id": "sub_1", "customer": "cus_1", "status": "past_due", "cancel_at_period_end": True,
        "current_period_start": 1700000000, "current_period_end": 1702592000, "trial_end": None,
    }, event_id="evt_1", created=1700000100)

    parsed = ev.parse_event(event)

    assert isinstance(parsed, ev.SubscriptionUpdated)
    assert parsed.event_id == "evt_1"
    assert parsed.created == datetime.fromtimestamp(1700000100, tz=timezone.utc)
    assert parsed.status == "past_due"
    assert parsed.cancel_at_period_end is True
    assert parsed.current_period_end == datetime.fromtimestamp(1702592000, tz=timezone.utc)
    assert parsed.trial_end is None

def test_created_event_maps_to_update():
    parsed = ev.parse_event(make_event("customer.subscription.created", {"id": "sub_1", "status": "trialing"}))
    assert isinstance(parsed, ev.SubscriptionUpdated)
    assert parsed.customer_id is None

def test_period_falls_back_to_first_item():
    parsed = ev.parse_event(make_event("customer.subscription.updated", {
        "id": "sub_1", "customer": {"id": "cus_1", "object": "customer"}, "status": "active",
        "items": {"data": [{"current_period_start": 1700000000, "current_period_end": 1702592000}]},
    }))
    assert parsed.customer_id == "cus_1"
    assert parsed.current_period_start == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert parsed.current_period_end == datetime.fromtimestamp(1702592000, tz=timezone.utc)

def test_deleted_uses_ended_at_when_canceled_at_missing():
    parsed = ev.parse_event(make_event("customer.subscription.deleted", {"id": "sub_1", "ended_at": 1700000000}))
    assert isinstance(parsed, ev.SubscriptionDeleted)
    assert parsed.canceled_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)

@pytest.mark.parametrize("event_type,cls", [
    ("invoice.paid", ev.InvoicePaid),
    ("invoice.payment_succeeded", ev.InvoicePaid),
    ("invoice.payment_failed", ev.InvoicePaymentFailed),
])
def test_invoice_variants(event_type, cls):
    parsed = ev.parse_event(make_event(event_type, {
        "id": "in_1", "customer": "cus_1", "subscription": "sub_1",
        "amount_paid": 500, "amount_due": 700, "currency": "usd",
    }))
    assert isinstance(parsed, cls)
    assert parsed.subscription_id == "sub_1"
    assert parsed.amount_cents == (700 if cls is ev.InvoicePaymentFailed else 500)

def test_invoice_subscription_from_parent_details():
    parsed = ev.parse_event(make_event("invoice.paid", {
        "id": "in_1", "customer": "cus_1",
        "parent": {"type": "subscription_details", "subscription_details": {"subscription": "sub_9"}},
    }))
    assert parsed.subscription_id == "sub_9"

def test_one_off_invoice_has_no_subscription():
    parsed = ev.parse_event(make_event("invoice.paid", {"id": "in_1", "customer": "cus_1"}))
    assert parsed.subscription_id is None

def test_payment_method_variants():
    attached = ev.parse_event(make_event("payment_method.attached", {
        "id": "pm_1", "customer": "cus_1", "card": {"brand": "visa", "last4": "4242", "exp_month": 4, "exp_year": 2030},
    }))
    assert isinstance(attached, ev.InstrumentUpserted)
    assert (attached.brand, attached.last4) == ("visa", "4242")

    detached = ev.parse_event(make_event("payment_method.detached", {"id": "pm_1", "customer": None},
                                         previous={"customer": "cus_1"}))
    assert isinstance(detached, ev.InstrumentDetached)
    assert detached.previous_customer_id == "cus_1"

def test_refund_variant():
    parsed = ev.parse_event(make_event("charge.refund.updated", {
        "id": "re_1", "status": "failed", "amount": 100, "payment_intent": "pi_1",
    }))
    assert isinstance(parsed, ev.RefundUpdated)
    assert parsed.status == "failed"
    assert parsed.payment_intent_id == "pi_1"

def test_unhandled_type_is_ignored():
    parsed = ev.parse_event(make_event("customer.created", {"id": "cus_1"}))
    assert isinstance(parsed, ev.Ignored)
    assert parsed.type == "customer.created"

@pytest.mark.parametrize("payload", [
    [],
    {"type": "invoice.paid"},
    {"id": "evt_1"},
    {"id": "evt_1", "type": "invoice.paid", "data": {"object": {"customer": "cus_1"}}},
])
def test_malformed_events(payload):
    with pytest.raises(ev.MalformedEvent):
        ev.parse_event(payload)

def test_variants_are_frozen():
    parsed = ev.parse_event(make_event("invoice.paid", {"id": "in_1"}))
    with pytest.raises(AttributeError):
        parsed.invoice_id = "in_2"
