from typing import List

import stripe
from flask import current_app
from sqlalchemy import update

from paysync.billing import provider
from paysync.billing.provider import field, ref
from paysync.errors import NotFound, ProviderError
from paysync.extensions import db
from paysync.models import PaymentInstrument
from paysync.services import identity
from paysync.services.persistence import upsert
from paysync.utils.helpers import utcnow


def create_setup_intent(account_id: int) -> str:
    """Client secret for collecting a card out-of-band (PaymentSheet / Stripe.js)."""
    customer_id = identity.ensure_identity(account_id)
    with provider.provider_call("setup_intents.create", mutating=True, account_id=account_id):
        intent = provider.client().setup_intents.create(params={
            "customer": customer_id,
            "payment_method_types": ["card"],
            "usage": "off_session",
        })
    return intent.client_secret


def list_instruments(account_id: int) -> List[PaymentInstrument]:
    """Default first, then newest first."""
    return (
        PaymentInstrument.query
        .filter_by(account_id=account_id)
        .order_by(
            PaymentInstrument.is_default.desc(),
            PaymentInstrument.created_at.desc(),
            PaymentInstrument.id.desc(),
        )
        .all()
    )


def has_instrument(account_id: int) -> bool:
    return db.session.query(
        PaymentInstrument.query.filter_by(account_id=account_id).exists()
    ).scalar()


def default_instrument(account_id: int) -> PaymentInstrument | None:
    return PaymentInstrument.query.filter_by(account_id=account_id, is_default=True).one_or_none()


def _owned(account_id: int, instrument_id: int) -> PaymentInstrument:
    inst = PaymentInstrument.query.filter_by(id=instrument_id, account_id=account_id).one_or_none()
    if inst is None:
        # Same answer for "missing" and "someone else's" (anti-enumeration)
        raise NotFound("Payment method not found", instrument_id=instrument_id)
    return inst


def _push_default(customer_id: str, provider_instrument_id: str, account_id: int) -> None:
    with provider.provider_call("customers.update", mutating=True, account_id=account_id):
        provider.client().customers.update(
            customer_id,
            params={"invoice_settings": {"default_payment_method": provider_instrument_id}},
        )


def _clear_defaults(account_id: int) -> None:
    db.session.execute(
        update(PaymentInstrument)
        .where(PaymentInstrument.account_id == account_id, PaymentInstrument.is_default.is_(True))
        .values(is_default=False, updated_at=utcnow())
    )


def _mark_default(instrument_id: int) -> None:
    db.session.execute(
        update(PaymentInstrument)
        .where(PaymentInstrument.id == instrument_id)
        .values(is_default=True, updated_at=utcnow())
    )


def upsert_instrument(account_id: int, pm, *, is_default: bool | None = None) -> None:
    """
    Insert or refresh one provider payment method by its provider id.
    With is_default=None an existing row keeps its default flag and a new
    row is inserted as non-default. Does not commit.
    """
    columns = ["account_id", "brand", "last4", "exp_month", "exp_year", "updated_at"]
    if is_default is not None:
        columns.append("is_default")
    card = field(pm, "card") or {}
    upsert(
        PaymentInstrument,
        {
            "account_id": account_id,
            "provider_instrument_id": ref(pm),
            "brand": field(card, "brand"),
            "last4": field(card, "last4"),
            "exp_month": field(card, "exp_month"),
            "exp_year": field(card, "exp_year"),
            "is_default": bool(is_default),
            "created_at": utcnow(),
            "updated_at": utcnow(),
        },
        conflict_on=["provider_instrument_id"],
        update=columns,
    )


def sync_instruments(account_id: int) -> List[PaymentInstrument]:
    """
    Mirror the provider's card list onto local rows (replace-by-upsert).

    Never deletes: cards removed on the provider side only disappear
    through remove_instrument() or a payment_method.detached webhook.
    """
    customer_id = identity.ensure_identity(account_id)
    client = provider.client()

    with provider.provider_call("payment_methods.list", account_id=account_id):
        methods = list(client.payment_methods.list(params={"customer": customer_id, "type": "card"}).data)
    with provider.provider_call("customers.retrieve", account_id=account_id):
        customer = client.customers.retrieve(customer_id)

    default_ref = ref(field(field(customer, "invoice_settings"), "default_payment_method"))
    known_refs = {ref(pm) for pm in methods}
    if methods and default_ref not in known_refs:
        # No (usable) default on the provider: nominate the first card there too
        default_ref = ref(methods[0])
        _push_default(customer_id, default_ref, account_id)
        current_app.logger.info(
            "billing.instruments.default_nominated",
            extra={"account_id": account_id, "provider_instrument_id": default_ref},
        )

    # One transaction: clear, then set through the upserts
    _clear_defaults(account_id)
    for pm in methods:
        upsert_instrument(account_id, pm, is_default=(ref(pm) == default_ref))
    db.session.commit()

    current_app.logger.info(
        "billing.instruments.synced",
        extra={"account_id": account_id, "count": len(methods)},
    )
    return list_instruments(account_id)


def set_default_instrument(account_id: int, instrument_id: int) -> PaymentInstrument:
    inst = _owned(account_id, instrument_id)
    customer_id = identity.ensure_identity(account_id)

    # Provider first; local state follows only on success
    _push_default(customer_id, inst.provider_instrument_id, account_id)

    _clear_defaults(account_id)
    _mark_default(inst.id)
    db.session.commit()
    db.session.refresh(inst)
    return inst


def _promote_next_default(account_id: int) -> PaymentInstrument | None:
    """Most recently created remaining card becomes default (provider + local). Does not commit."""
    nxt = (
        PaymentInstrument.query
        .filter_by(account_id=account_id)
        .order_by(PaymentInstrument.created_at.desc(), PaymentInstrument.id.desc())
        .first()
    )
    if nxt is None:
        return None
    customer_id = identity.ensure_identity(account_id)
    _push_default(customer_id, nxt.provider_instrument_id, account_id)
    _clear_defaults(account_id)
    _mark_default(nxt.id)
    return nxt


def _detach(account_id: int, provider_ref: str) -> bool:
    """Detach on the provider. False when the provider no longer holds the card."""
    try:
        with provider.provider_call("payment_methods.detach", mutating=True, account_id=account_id):
            provider.client().payment_methods.detach(provider_ref)
    except NotFound:
        return False
    except ProviderError as exc:
        cause = exc.__cause__
        if not (isinstance(cause, stripe.InvalidRequestError) and "not attached" in str(cause).lower()):
            raise
        return False
    return True


def remove_instrument(account_id: int, instrument_id: int) -> None:
    inst = _owned(account_id, instrument_id)
    was_default = bool(inst.is_default)
    provider_ref = inst.provider_instrument_id

    if not _detach(account_id, provider_ref):
        # Gone on the provider side; the local row still has to go
        current_app.logger.info(
            "billing.instruments.already_detached",
            extra={"account_id": account_id, "provider_instrument_id": provider_ref},
        )

    db.session.delete(inst)
    db.session.commit()
    current_app.logger.info(
        "billing.instruments.removed",
        extra={"account_id": account_id, "provider_instrument_id": provider_ref, "was_default": was_default},
    )

    if not was_default:
        return
    try:
        _promote_next_default(account_id)
        db.session.commit()
    except (ProviderError, NotFound) as exc:
        # Removal stands; the next sync nominates a default
        db.session.rollback()
        current_app.logger.warning(
            "billing.instruments.promotion_failed",
            extra={"account_id": account_id, "error": getattr(exc, "code", type(exc).__name__)},
        )


def forget_instrument(provider_instrument_id: str) -> int | None:
    """
    Drop the local row for a card detached on the provider side (webhook).
    Promotes a replacement default when needed. Does not call detach and
    does not commit. Returns the owning account id, or None if unknown.
    """
    inst = PaymentInstrument.query.filter_by(provider_instrument_id=provider_instrument_id).one_or_none()
    if inst is None:
        return None
    account_id = inst.account_id
    was_default = bool(inst.is_default)
    db.session.delete(inst)
    db.session.flush()
    if was_default:
        _promote_next_default(account_id)
    return account_id
