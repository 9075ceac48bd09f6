from sqlalchemy import func
from paysync.extensions import db

class PaymentIdentity(db.Model):
    """Account -> provider customer mapping. Exactly one per account."""
    __tablename__ = "payment_identities"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(
        db.Integer,
        db.ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
        index=True,
    )
    provider_customer_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<PaymentIdentity account_id={self.account_id} provider_customer_id={self.provider_customer_id!r}>"
