import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import json

import pytest
from paysync import create_app
from paysync.extensions import db
from paysync.models import Account, ROLE_ADMIN, ROLE_CUSTOMER

from fakes import FakeStripe, make_event, sign

WEBHOOK_SECRET = "whsec_test_x"

@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        STRIPE_SECRET_KEY="sk_test_x",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        STRIPE_PRICE_CUSTOMER_MONTHLY="price_customer_monthly",
        STRIPE_PRICE_CUSTOMER_PRO="price_customer_pro",
        STRIPE_PRICE_BUSINESS_MONTHLY="price_business_monthly",
        STRIPE_PRICE_BUSINESS_PRO=None,
        WEBHOOK_ENFORCE_EVENT_ORDER=True,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()

@pytest.fixture()
def stripe_fake(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr("paysync.billing.provider.StripeClient", fake)
    return fake

@pytest.fixture()
def ctx(app):
    with app.app_context():
        yield

def make_account(app, email="a@example.com", name="Ada", role=ROLE_CUSTOMER) -> int:
    with app.app_context():
        acct = Account(email=email, name=name, role=role)
        db.session.add(acct)
        db.session.commit()
        return acct.id

@pytest.fixture()
def account_id(app):
    return make_account(app)

@pytest.fixture()
def admin_id(app):
    return make_account(app, email="ops@example.com", name="Ops", role=ROLE_ADMIN)

def login(client, account_id: int):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(account_id)

def post_event(client, event: dict, secret: str = WEBHOOK_SECRET, signature: str | None = None):
    body = json.dumps(event)
    headers = {"Stripe-Signature": signature if signature is not None else sign(body, secret)}
    return client.post("/webhooks/stripe", data=body, headers=headers, content_type="application/json")


def start_trial_for(app, account_id: int, stripe_fake, plan: str = "customer"):
    """Seed identity + one default card + a trialing subscription. Returns (customer_id, subscription_id)."""
    from paysync.services import identity, instruments, subscriptions
    with app.app_context():
        cid = identity.ensure_identity(account_id)
        stripe_fake.add_card(cid, default=True)
        instruments.sync_instruments(account_id)
        sub = subscriptions.start_trial(account_id, plan)
        return cid, sub.provider_subscription_id
