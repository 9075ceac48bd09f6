import pytest
import stripe
from paysync.errors import NotFound, ProviderUnavailable
from paysync.extensions import db
from paysync.models import PaymentIdentity, PaymentInstrument
from paysync.services import identity, instruments

def _defaults(account_id):
    return [r.provider_instrument_id for r in PaymentInstrument.query.filter_by(account_id=account_id, is_default=True)]

# ----- identity -----

def test_ensure_identity_creates_once(ctx, account_id, stripe_fake):
    first = identity.ensure_identity(account_id)
    second = identity.ensure_identity(account_id)
    assert first == second
    assert stripe_fake.ops().count("customers.create") == 1
    assert PaymentIdentity.query.filter_by(account_id=account_id).count() == 1
    # Provider customer carries the account id for support lookups
    assert stripe_fake.customers[first]["metadata"] == {"account_id": str(account_id)}

def test_ensure_identity_unknown_account(ctx, stripe_fake):
    with pytest.raises(NotFound):
        identity.ensure_identity(9999)
    assert stripe_fake.calls == []

def test_ensure_identity_concurrent_create_rereads(ctx, account_id, stripe_fake, monkeypatch):
    real_get = identity.get_identity
    calls = {"n": 0}

    def racing_get(aid):
        # Another worker commits the mapping between our read and our insert
        calls["n"] += 1
        if calls["n"] == 1:
            db.session.add(PaymentIdentity(account_id=aid, provider_customer_id="cus_other"))
            db.session.commit()
            return None
        return real_get(aid)

    monkeypatch.setattr(identity, "get_identity", racing_get)
    assert identity.ensure_identity(account_id) == "cus_other"
    assert PaymentIdentity.query.filter_by(account_id=account_id).count() == 1

def test_ensure_identity_uses_stable_idempotency_key(ctx, account_id, stripe_fake):
    identity.ensure_identity(account_id)
    _, _, kwargs = stripe_fake.calls[0]
    key = kwargs["options"]["idempotency_key"]
    assert key.startswith("paysync:")

def test_ensure_identity_provider_down(ctx, account_id, stripe_fake):
    stripe_fake.fail_next["customers.create"] = stripe.APIConnectionError("connection reset")
    with pytest.raises(ProviderUnavailable) as ei:
        identity.ensure_identity(account_id)
    assert ei.value.retryable
    assert ei.value.details["ambiguous"] is True
    assert identity.get_identity(account_id) is None

# ----- instruments -----

def test_setup_intent_returns_client_secret(ctx, account_id, stripe_fake):
    secret = instruments.create_setup_intent(account_id)
    assert secret.endswith("_secret_x")
    _, _, kwargs = [c for c in stripe_fake.calls if c[0] == "setup_intents.create"][0]
    assert kwargs["params"]["usage"] == "off_session"
    assert identity.get_identity(account_id) is not None

def test_sync_nominates_first_card_when_provider_has_none(ctx, account_id, stripe_fake):
    cid = identity.ensure_identity(account_id)
    first = stripe_fake.add_card(cid, last4="1111")
    stripe_fake.add_card(cid, last4="2222")

    rows = instruments.sync_instruments(account_id)

    assert len(rows) == 2
    assert stripe_fake.default_for(cid) == first
    assert _defaults(account_id) == [first]
    # Listing: default first
    assert rows[0].provider_instrument_id == first

def test_sync_follows_provider_default(ctx, account_id, stripe_fake):
    cid = identity.ensure_identity(account_id)
    stripe_fake.add_card(cid, last4="1111")
    second = stripe_fake.add_card(cid, last4="2222", default=True)

    instruments.sync_instruments(account_id)

    assert _defaults(account_id) == [second]
    assert "customers.update" not in stripe_fake.ops()

def test_sync_twice_is_idempotent(ctx, account_id, stripe_fake):
    cid = identity.ensure_identity(account_id)
    stripe_fake.add_card(cid, last4="1111", default=True)
    stripe_fake.add_card(cid, brand="mastercard", last4="5555")

    first = [r.to_dict() for r in instruments.sync_instruments(account_id)]
    second = [r.to_dict() for r in instruments.sync_instruments(account_id)]

    assert first == second
    assert PaymentInstrument.query.filter_by(account_id=account_id).count() == 2

def test_sync_never_deletes(ctx, account_id, stripe_fake):
    cid = identity.ensure_identity(account_id)
    keep = stripe_fake.add_card(cid, default=True)
    gone = stripe_fake.add_card(cid)
    instruments.sync_instruments(account_id)

    # Removed on the provider side without a webhook reaching us
    stripe_fake.payment_methods.pop(gone)
    instruments.sync_instruments(account_id)

    refs = {r.provider_instrument_id for r in instruments.list_instruments(account_id)}
    assert refs == {keep, gone}

def test_sync_refreshes_card_metadata(ctx, account_id, stripe_fake):
    cid = identity.ensure_identity(account_id)
    pm = stripe_fake.add_card(cid, default=True)
    instruments.sync_instruments(account_id)

    stripe_fake.payment_methods[pm]["card"]["exp_year"] = 2034
    instruments.sync_instruments(account_id)

    row = PaymentInstrument.query.filter_by(provider_instrument_id=pm).one()
    assert row.exp_year == 2034

def _three_cards(account_id, stripe_fake):
    cid = identity.ensure_identity(account_id)
    a = stripe_fake.add_card(cid, last4="1111", default=True)
    b = stripe_fake.add_card(cid, last4="2222")
    c = stripe_fake.add_card(cid, last4="3333")
    instruments.sync_instruments(account_id)
    return cid, a, b, c

def _row(ref):
    return PaymentInstrument.query.filter_by(provider_instrument_id=ref).one()

def test_remove_default_promotes_most_recent(ctx, account_id, stripe_fake):
    cid, a, b, c = _three_cards(account_id, stripe_fake)

    instruments.remove_instrument(account_id, _row(a).id)

    assert _defaults(account_id) == [c]
    assert stripe_fake.default_for(cid) == c
    assert PaymentInstrument.query.filter_by(account_id=account_id).count() == 2
    assert a not in stripe_fake.payment_methods

def test_remove_non_default_keeps_default(ctx, account_id, stripe_fake):
    cid, a, b, c = _three_cards(account_id, stripe_fake)

    instruments.remove_instrument(account_id, _row(b).id)

    assert _defaults(account_id) == [a]
    assert stripe_fake.default_for(cid) == a

def test_remove_last_card_leaves_no_default(ctx, account_id, stripe_fake):
    cid = identity.ensure_identity(account_id)
    only = stripe_fake.add_card(cid, default=True)
    instruments.sync_instruments(account_id)

    instruments.remove_instrument(account_id, _row(only).id)

    assert instruments.list_instruments(account_id) == []

def test_remove_someone_elses_card_is_not_found(app, ctx, account_id, stripe_fake):
    from conftest import make_account
    other = make_account(app, email="b@example.com", name="Bob")
    cid = identity.ensure_identity(other)
    pm = stripe_fake.add_card(cid, default=True)
    instruments.sync_instruments(other)

    with pytest.raises(NotFound):
        instruments.remove_instrument(account_id, _row(pm).id)
    assert pm in stripe_fake.payment_methods

def test_remove_card_already_gone_at_provider_drops_local_row(ctx, account_id, stripe_fake):
    cid, a, b, c = _three_cards(account_id, stripe_fake)
    stripe_fake.payment_methods.pop(b)

    instruments.remove_instrument(account_id, _row(b).id)

    assert PaymentInstrument.query.filter_by(provider_instrument_id=b).count() == 0
    assert _defaults(account_id) == [a]

def test_remove_only_card_already_gone_clears_has_instrument(ctx, account_id, stripe_fake):
    cid = identity.ensure_identity(account_id)
    only = stripe_fake.add_card(cid, default=True)
    instruments.sync_instruments(account_id)
    stripe_fake.payment_methods.pop(only)

    instruments.remove_instrument(account_id, _row(only).id)

    assert instruments.has_instrument(account_id) is False

def test_remove_card_not_attached_at_provider_drops_local_row(ctx, account_id, stripe_fake):
    cid, a, b, c = _three_cards(account_id, stripe_fake)
    stripe_fake.fail_next["payment_methods.detach"] = stripe.InvalidRequestError(
        "The payment method you provided is not attached to a customer so detachment is impossible.", None
    )

    instruments.remove_instrument(account_id, _row(c).id)

    assert PaymentInstrument.query.filter_by(provider_instrument_id=c).count() == 0

def test_remove_provider_down_keeps_local_row(ctx, account_id, stripe_fake):
    cid, a, b, c = _three_cards(account_id, stripe_fake)
    stripe_fake.fail_next["payment_methods.detach"] = stripe.APIConnectionError("timeout")

    with pytest.raises(ProviderUnavailable):
        instruments.remove_instrument(account_id, _row(b).id)

    db.session.rollback()
    assert _row(b).provider_instrument_id == b

def test_remove_default_survives_promotion_failure(ctx, account_id, stripe_fake):
    cid, a, b, c = _three_cards(account_id, stripe_fake)
    stripe_fake.fail_next["customers.update"] = stripe.APIConnectionError("timeout")

    instruments.remove_instrument(account_id, _row(a).id)

    assert PaymentInstrument.query.filter_by(provider_instrument_id=a).count() == 0
    assert a not in stripe_fake.payment_methods
    assert _defaults(account_id) == []
    assert PaymentInstrument.query.filter_by(account_id=account_id).count() == 2

    # next sync nominates a default again
    instruments.sync_instruments(account_id)
    assert len(_defaults(account_id)) == 1


def test_set_default_pushes_then_flips(ctx, account_id, stripe_fake):
    cid, a, b, c = _three_cards(account_id, stripe_fake)

    instruments.set_default_instrument(account_id, _row(b).id)

    assert _defaults(account_id) == [b]
    assert stripe_fake.default_for(cid) == b

def test_set_default_provider_failure_leaves_local_state(ctx, account_id, stripe_fake):
    cid, a, b, c = _three_cards(account_id, stripe_fake)
    stripe_fake.fail_next["customers.update"] = stripe.APIConnectionError("timeout")

    with pytest.raises(ProviderUnavailable):
        instruments.set_default_instrument(account_id, _row(b).id)

    db.session.rollback()
    assert _defaults(account_id) == [a]

def test_at_most_one_default_throughout(ctx, account_id, stripe_fake):
    cid, a, b, c = _three_cards(account_id, stripe_fake)
    for ref in (b, c, a, b):
        instruments.set_default_instrument(account_id, _row(ref).id)
        assert len(_defaults(account_id)) == 1
    instruments.remove_instrument(account_id, _row(b).id)
    assert len(_defaults(account_id)) == 1
