from flask import current_app
from sqlalchemy.exc import IntegrityError

from paysync.billing import provider
from paysync.errors import NotFound
from paysync.extensions import db
from paysync.models import Account, PaymentIdentity


def get_identity(account_id: int) -> PaymentIdentity | None:
    return PaymentIdentity.query.filter_by(account_id=account_id).one_or_none()


def account_for_customer(provider_customer_id: str | None) -> int | None:
    """Reverse lookup used by webhooks: provider customer -> account id."""
    if not provider_customer_id:
        return None
    ident = PaymentIdentity.query.filter_by(provider_customer_id=provider_customer_id).one_or_none()
    return ident.account_id if ident else None


def ensure_identity(account_id: int) -> str:
    """
    Return the account's provider customer id, creating the customer on first use.

    Safe under concurrent first calls: the create carries an idempotency key
    derived from the account id (so Stripe hands both callers the same
    customer) and the unique constraint on account_id turns the losing insert
    into a re-read.
    """
    ident = get_identity(account_id)
    if ident:
        return ident.provider_customer_id

    account = db.session.get(Account, account_id)
    if account is None:
        raise NotFound("Account not found", account_id=account_id)

    with provider.provider_call("customers.create", mutating=True, account_id=account_id):
        customer = provider.client().customers.create(
            params={
                "email": account.email,
                "name": account.name,
                "metadata": {"account_id": str(account_id)},
            },
            options={"idempotency_key": provider.make_idempotency_key("customer", account_id)},
        )

    db.session.add(PaymentIdentity(account_id=account_id, provider_customer_id=customer.id))
    try:
        db.session.commit()
    except IntegrityError:
        # Someone else just created it
        db.session.rollback()
        ident = get_identity(account_id)
        if ident is None:
            raise
        current_app.logger.info(
            "billing.identity.concurrent_create",
            extra={"account_id": account_id, "provider_customer_id": ident.provider_customer_id},
        )
        return ident.provider_customer_id

    current_app.logger.info(
        "billing.identity.created",
        extra={"account_id": account_id, "provider_customer_id": customer.id},
    )
    return customer.id
