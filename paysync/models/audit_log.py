from sqlalchemy import event
from paysync.extensions import db
from paysync.utils.helpers import isoformat, utcnow

class AuditLogEntry(db.Model):
    """
    Append-only ledger of financial events. `provider_event_id` is the
    idempotency key: the provider's event id for webhook-originated rows, a
    deterministic synthetic key (``trial_start_<sub>``, ``refund_<re>``) for
    rows written by local operations.
    """
    __tablename__ = "payment_audit_log"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)

    provider_event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    event_type = db.Column(db.String(80), nullable=False, index=True)

    provider_customer_id = db.Column(db.String(64), nullable=True)
    provider_subscription_id = db.Column(db.String(64), nullable=True, index=True)
    provider_invoice_id = db.Column(db.String(64), nullable=True)
    provider_payment_intent_id = db.Column(db.String(64), nullable=True)

    # Minor units; refunds are negative
    amount_cents = db.Column(db.Integer, nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    description = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(32), nullable=False, default="pending")
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "eventType": self.event_type,
            "amountCents": self.amount_cents,
            "currency": self.currency,
            "description": self.description,
            "providerInvoiceId": self.provider_invoice_id,
            "providerSubscriptionId": self.provider_subscription_id,
            "status": self.status,
            "metadata": self.meta or {},
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<AuditLogEntry id={self.id} event={self.provider_event_id!r} type={self.event_type!r}>"


@event.listens_for(AuditLogEntry, "before_update")
def _refuse_update(mapper, connection, target):
    raise ValueError("payment_audit_log rows are immutable")


@event.listens_for(AuditLogEntry, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ValueError("payment_audit_log rows are immutable")
