import pytest
import stripe
from paysync.billing import catalog, provider
from paysync.errors import ConfigurationError, NotFound, ProviderError, ProviderUnavailable

# ----- catalog -----

@pytest.mark.parametrize("raw,key", [
    ("customer", "customer_monthly"),
    ("business", "business_monthly"),
    (" Customer_Pro ", "customer_pro"),
])
def test_resolve_plan_aliases(ctx, raw, key):
    plan, price = catalog.resolve_plan(raw)
    assert plan.key == key
    assert price == f"price_{key}"

def test_trial_lengths():
    assert catalog.PLANS["customer_monthly"].trial_days == 7
    assert catalog.PLANS["business_monthly"].trial_days == 30

def test_unpriced_plan_is_configuration_error(ctx):
    with pytest.raises(ConfigurationError) as ei:
        catalog.resolve_plan("business_pro")
    # Detail stays server-side
    assert ei.value.to_dict() == {"error": "configuration_error", "message": "Billing is not configured correctly"}

def test_entitlements_by_plan():
    assert "tickets.purchase" in catalog.resolve_entitlements("customer")
    assert "tickets.skip_line" in catalog.resolve_entitlements("customer_pro")
    assert "analytics.advanced" not in catalog.resolve_entitlements("business_monthly")
    assert catalog.resolve_entitlements("gold") == []
    assert catalog.resolve_entitlements(None) == []

def test_is_known_plan():
    assert catalog.is_known_plan("business")
    assert not catalog.is_known_plan("enterprise")

# ----- provider -----

def test_client_requires_secret_key(app, ctx, monkeypatch):
    monkeypatch.setitem(app.config, "STRIPE_SECRET_KEY", None)
    with pytest.raises(ConfigurationError):
        provider.client()

def test_client_is_a_stripe_client(ctx):
    assert isinstance(provider.client(), stripe.StripeClient)

def test_idempotency_keys_are_stable_and_distinct():
    a = provider.make_idempotency_key("trial", 1, "customer_monthly", "none")
    assert a == provider.make_idempotency_key("trial", 1, "customer_monthly", "none")
    assert a != provider.make_idempotency_key("trial", 2, "customer_monthly", "none")
    assert len(a) <= 255

def _raise(exc, **kw):
    with provider.provider_call("things.create", **kw):
        raise exc

def test_connection_error_on_write_is_ambiguous(ctx):
    with pytest.raises(ProviderUnavailable) as ei:
        _raise(stripe.APIConnectionError("reset"), mutating=True)
    assert ei.value.details["ambiguous"] is True
    assert ei.value.to_dict()["retryable"] is True

def test_connection_error_on_read_is_not_ambiguous(ctx):
    with pytest.raises(ProviderUnavailable) as ei:
        _raise(stripe.APIConnectionError("reset"))
    assert ei.value.details["ambiguous"] is False

def test_rate_limit_is_unavailable_not_ambiguous(ctx):
    with pytest.raises(ProviderUnavailable) as ei:
        _raise(stripe.RateLimitError("slow down"), mutating=True)
    assert ei.value.details["ambiguous"] is False

def test_provider_5xx_is_unavailable(ctx):
    with pytest.raises(ProviderUnavailable):
        _raise(stripe.APIError("oops"))

def test_missing_resource_is_not_found(ctx):
    with pytest.raises(NotFound):
        _raise(stripe.InvalidRequestError("No such customer", "id", code="resource_missing"))

def test_other_invalid_request_is_provider_error(ctx):
    with pytest.raises(ProviderError) as ei:
        _raise(stripe.InvalidRequestError("bad param", "items"))
    assert not isinstance(ei.value, ProviderUnavailable)
    assert ei.value.status == 502

def test_card_error_is_provider_error(ctx):
    with pytest.raises(ProviderError) as ei:
        _raise(stripe.CardError("Your card was declined.", "card", "card_declined"))
    assert ei.value.code == "provider_error"

def test_unrelated_errors_pass_through(ctx):
    with pytest.raises(KeyError):
        _raise(KeyError("x"))

def test_field_and_ref_read_objects_and_dicts():
    assert provider.field({"a": 1}, "a") == 1
    assert provider.field(None, "a", 5) == 5
    assert provider.ref("cus_1") == "cus_1"
    assert provider.ref({"id": "cus_2"}) == "cus_2"
    assert provider.ref(None) is None
