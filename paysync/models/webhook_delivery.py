from paysync.extensions import db
from paysync.utils.helpers import utcnow

OUTCOME_APPLIED = "applied"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"
OUTCOME_FAILED = "failed"
OUTCOME_REJECTED = "rejected"

class WebhookDelivery(db.Model):
    """
    One row per inbound webhook attempt, whatever happened to it. Distinct
    from the audit ledger, which only holds successfully applied effects.
    """
    __tablename__ = "webhook_deliveries"

    id = db.Column(db.Integer, primary_key=True)
    provider_event_id = db.Column(db.String(255), nullable=False, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    signature_valid = db.Column(db.Boolean, nullable=False, default=True)
    outcome = db.Column(db.String(16), nullable=False, index=True)
    notes = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<WebhookDelivery id={self.id} event={self.provider_event_id!r} outcome={self.outcome!r}>"
