from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError
from paysync.extensions import db
from paysync.models import Account, PaymentIdentity, PaymentInstrument, Subscription

def test_one_default_instrument_per_account(ctx, account_id):
    db.session.add(PaymentInstrument(account_id=account_id, provider_instrument_id="pm_a", is_default=True))
    db.session.add(PaymentInstrument(account_id=account_id, provider_instrument_id="pm_b", is_default=False))
    db.session.commit()

    db.session.add(PaymentInstrument(account_id=account_id, provider_instrument_id="pm_c", is_default=True))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

def test_one_identity_per_account(ctx, account_id):
    db.session.add(PaymentIdentity(account_id=account_id, provider_customer_id="cus_1"))
    db.session.commit()
    db.session.add(PaymentIdentity(account_id=account_id, provider_customer_id="cus_2"))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

def test_one_subscription_row_per_account(ctx, account_id):
    for ref in ("sub_1", "sub_2"):
        db.session.add(Subscription(account_id=account_id, provider_subscription_id=ref,
                                    provider_customer_id="cus_1", plan_key="customer_monthly", status="trialing"))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

@pytest.mark.parametrize("status,terminal", [
    ("trialing", False), ("active", False), ("past_due", False),
    ("canceled", True), ("incomplete", True), ("incomplete_expired", True), ("unpaid", True),
])
def test_terminal_statuses(status, terminal):
    assert Subscription(status=status).is_terminal is terminal

def test_suspension_active_honours_expiry():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    acct = Account(email="s@example.com", name="S", is_suspended=True)
    assert acct.suspension_active(now) is True

    # SQLite hands back naive values
    acct.suspended_until = datetime(2030, 1, 2)
    assert acct.suspension_active(now) is True
    assert acct.suspension_active(now + timedelta(days=2)) is False

    acct.is_suspended = False
    assert acct.suspension_active(now) is False

def test_invalid_role_rejected(ctx):
    db.session.add(Account(email="r@example.com", name="R", role="owner"))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()
