from flask import Flask
from flask_login import login_user
from werkzeug.exceptions import Forbidden
import pytest
from paysync.extensions import db
from paysync.models import Account, Subscription
from paysync.security.entitlements import entitlement_snapshot, require_active_subscription
from paysync.services import policy

class DummyUser:
    def __init__(self, uid, auth=True, role="customer"): self.id, self.is_authenticated, self.role = uid, auth, role

def make_app():
    app = Flask(__name__); app.config.update(SECRET_KEY="x", TESTING=True)
    return app

def _guarded():
    @policy.role_required("admin")
    def v(): return "ok", 200
    return v

def test_role_required_unauth_json(monkeypatch):
    app = make_app(); v = _guarded()
    monkeypatch.setattr(policy, "current_user", DummyUser(None, auth=False))
    with app.test_request_context("/x", headers={"Accept":"application/json"}):
        r = v(); assert r[1] == 401 and r[0].json["error"] == "unauthorized"

def test_role_required_forbidden_json(monkeypatch):
    app = make_app(); v = _guarded()
    monkeypatch.setattr(policy, "current_user", DummyUser(7, role="customer"))
    with app.test_request_context("/admin/x"):
        r = v(); assert r[1] == 403 and r[0].json["error"] == "forbidden"

def test_role_required_forbidden_html_aborts(monkeypatch):
    app = make_app(); v = _guarded()
    monkeypatch.setattr(policy, "current_user", DummyUser(7, role="business"))
    with app.test_request_context("/x", headers={"Accept":"text/html"}):
        with pytest.raises(Forbidden):
            v()

def test_role_required_ok(monkeypatch):
    app = make_app(); v = _guarded()
    monkeypatch.setattr(policy, "current_user", DummyUser(7, role="admin"))
    with app.test_request_context("/x", headers={"Accept":"application/json"}):
        r = v(); assert r == ("ok", 200)

# ----- entitlement guard -----

def _account_with(status):
    acct = Account(email=f"{status}@example.com", name=status)
    db.session.add(acct)
    db.session.commit()
    db.session.add(Subscription(
        account_id=acct.id,
        provider_subscription_id=f"sub_{status}",
        provider_customer_id=f"cus_{status}",
        plan_key="customer_monthly",
        status=status,
    ))
    db.session.commit()
    return acct

@pytest.mark.parametrize("status,entitled", [
    ("trialing", True),
    ("active", True),
    ("past_due", False),
    ("unpaid", False),
    ("canceled", False),
    ("incomplete", False),
])
def test_snapshot_by_status(app, status, entitled):
    with app.app_context():
        snap = entitlement_snapshot(_account_with(status))
        assert snap["entitled"] is entitled
        assert snap["status"] == status
        assert bool(snap["features"]) is entitled

def test_snapshot_without_subscription(app, account_id):
    with app.app_context():
        snap = entitlement_snapshot(db.session.get(Account, account_id))
        assert snap == {"entitled": False, "plan": None, "status": None, "suspended": False, "features": []}

def test_guard_allows_entitled_account(app):
    with app.app_context():
        acct = _account_with("active")
        guarded = require_active_subscription(lambda: "ok")
        with app.test_request_context("/_guard_ok"):
            login_user(acct)
            assert guarded() == "ok"

def test_guard_blocks_suspended_account(app):
    with app.app_context():
        acct = _account_with("active")
        acct.is_suspended = True
        db.session.commit()
        guarded = require_active_subscription(lambda: "ok")
        with app.test_request_context("/_guard_blocked"):
            login_user(acct)
            body, status = guarded()
            assert status == 403
            assert body == {"error": "entitlement_required", "missing": "account_in_good_standing"}
