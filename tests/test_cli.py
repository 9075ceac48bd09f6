from paysync.extensions import db
from paysync.models import Account, WebhookDelivery
from paysync.services import audit

def test_accounts_create(app):
    runner = app.test_cli_runner()
    r = runner.invoke(args=["accounts", "create", "--email", "New@Example.com", "--name", "  New  Person "])
    assert r.exit_code == 0, r.output
    assert "Account created" in r.output

    with app.app_context():
        acct = Account.query.filter_by(email="new@example.com").one()
        assert acct.name == "New Person"
        assert acct.role == "customer"

    again = runner.invoke(args=["accounts", "create", "--email", "new@example.com", "--name", "Dup"])
    assert again.exit_code != 0
    assert "already exists" in again.output

def test_accounts_create_rejects_bad_email(app):
    r = app.test_cli_runner().invoke(args=["accounts", "create", "--email", "nope", "--name", "X"])
    assert r.exit_code != 0 and "Invalid email" in r.output

def test_audit_log_prints_entries(app, account_id):
    with app.app_context():
        audit.record(event_key="evt_cli", event_type="invoice.paid", account_id=account_id, amount_cents=999)
        db.session.commit()

    r = app.test_cli_runner().invoke(args=["billing", "audit-log", "--account-id", str(account_id)])
    assert r.exit_code == 0
    assert '"eventType": "invoice.paid"' in r.output

def test_sync_instruments_command(app, account_id, stripe_fake):
    r = app.test_cli_runner().invoke(args=["billing", "sync-instruments", "--account-id", str(account_id)])
    assert r.exit_code == 0, r.output
    assert "Synced 0 payment method(s)" in r.output

    r = app.test_cli_runner().invoke(args=["billing", "sync-instruments", "--account-id", "9999"])
    assert r.exit_code != 0 and "not_found" in r.output

def test_webhook_failures(app):
    runner = app.test_cli_runner()
    assert "No failed deliveries" in runner.invoke(args=["webhooks", "failures"]).output

    with app.app_context():
        db.session.add(WebhookDelivery(provider_event_id="evt_f", type="invoice.paid", outcome="failed",
                                       notes="handler_error:RuntimeError"))
        db.session.add(WebhookDelivery(provider_event_id="invalid:abc", type="signature_invalid",
                                       outcome="rejected", signature_valid=False))
        db.session.commit()

    out = runner.invoke(args=["webhooks", "failures"]).output
    assert "evt_f" in out and "invalid:abc" not in out

    out = runner.invoke(args=["webhooks", "failures", "--include-rejected"]).output
    assert "invalid:abc" in out
