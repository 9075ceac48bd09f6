import json

import click
from flask.cli import with_appcontext
from paysync.errors import BillingError
from paysync.extensions import db
from paysync.models import Account, WebhookDelivery
from paysync.models.account import ROLE_CHOICES, ROLE_CUSTOMER
from paysync.models.webhook_delivery import OUTCOME_FAILED, OUTCOME_REJECTED
from paysync.services import audit, instruments
from paysync.utils.validators import clean_str, is_valid_email

@click.group()
def accounts():
    """Account management."""

@accounts.command("create")
@click.option("--email", required=True)
@click.option("--name", required=True)
@click.option("--role", type=click.Choice(ROLE_CHOICES), default=ROLE_CUSTOMER)
@with_appcontext
def accounts_create(email, name, role):
    email = (email or "").strip().lower()
    if not is_valid_email(email):
        raise click.ClickException("Invalid email")
    if db.session.query(Account).filter_by(email=email).count():
        raise click.ClickException("Account already exists")

    acct = Account(email=email, name=clean_str(name) or email, role=role)
    db.session.add(acct)
    db.session.commit()
    click.echo(f"Account created id={acct.id} email={acct.email} role={acct.role}")

@click.group()
def billing():
    """Billing ops."""

@billing.command("audit-log")
@click.option("--account-id", type=int, required=True)
@click.option("--limit", type=int, default=20, show_default=True)
@with_appcontext
def billing_audit_log(account_id, limit):
    for entry in audit.entries_for_account(account_id, limit=limit):
        click.echo(json.dumps(entry.to_dict(), sort_keys=True))

@billing.command("sync-instruments")
@click.option("--account-id", type=int, required=True)
@with_appcontext
def billing_sync_instruments(account_id):
    """Pull the account's cards from Stripe (e.g. after a support fix in the dashboard)."""
    try:
        rows = instruments.sync_instruments(account_id)
    except BillingError as e:
        raise click.ClickException(f"{e.code}: {e.message}")
    for r in rows:
        mark = "*" if r.is_default else " "
        click.echo(f"{mark} {r.id} {r.brand or '?'} ****{r.last4 or '????'} {r.provider_instrument_id}")
    click.echo(f"Synced {len(rows)} payment method(s) for account {account_id}")

@click.group()
def webhooks():
    """Webhook delivery inspection."""

@webhooks.command("failures")
@click.option("--limit", type=int, default=50, show_default=True)
@click.option("--include-rejected/--no-include-rejected", default=False)
@with_appcontext
def webhooks_failures(limit, include_rejected):
    """Recent deliveries that need a human: handler failures (and bad signatures)."""
    outcomes = [OUTCOME_FAILED] + ([OUTCOME_REJECTED] if include_rejected else [])
    rows = (
        WebhookDelivery.query
        .filter(WebhookDelivery.outcome.in_(outcomes))
        .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id.desc())
        .limit(limit)
        .all()
    )
    for r in rows:
        click.echo(f"{r.created_at:%Y-%m-%d %H:%M:%S} {r.outcome:<8} {r.type:<40} {r.provider_event_id} {r.notes or ''}")
    if not rows:
        click.echo("No failed deliveries")

def register_cli(app):
    app.cli.add_command(accounts)
    app.cli.add_command(billing)
    app.cli.add_command(webhooks)
