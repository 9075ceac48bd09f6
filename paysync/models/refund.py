from sqlalchemy import func
from paysync.extensions import db
from paysync.utils.helpers import isoformat

class Refund(db.Model):
    __tablename__ = "refunds"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False, index=True)

    order_id = db.Column(db.String(64), nullable=True)
    subscription_ref = db.Column(db.String(64), nullable=True)

    provider_refund_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    provider_payment_intent_id = db.Column(db.String(64), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    reason = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(32), nullable=False, default="pending")  # pending|requires_action|succeeded|failed|canceled
    notes = db.Column(db.String(500), nullable=True)
    requested_by = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "providerRefundId": self.provider_refund_id,
            "providerPaymentIntentId": self.provider_payment_intent_id,
            "amountCents": self.amount_cents,
            "currency": self.currency,
            "reason": self.reason,
            "status": self.status,
            "processedAt": isoformat(self.processed_at),
        }

    def __repr__(self) -> str:
        return f"<Refund id={self.id} provider_refund_id={self.provider_refund_id!r} status={self.status!r}>"
