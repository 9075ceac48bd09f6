from sqlalchemy import func, false, text, Index
from paysync.extensions import db

class PaymentInstrument(db.Model):
    __tablename__ = "payment_instruments"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)

    # Natural conflict key for upserts
    provider_instrument_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    brand = db.Column(db.String(32), nullable=True)
    last4 = db.Column(db.String(4), nullable=True)
    exp_month = db.Column(db.Integer, nullable=True)
    exp_year = db.Column(db.Integer, nullable=True)

    is_default = db.Column(db.Boolean, nullable=False, default=False, server_default=false())

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # At most one default per account
        Index(
            "uq_payment_instruments_one_default",
            "account_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "providerInstrumentId": self.provider_instrument_id,
            "brand": self.brand,
            "last4": self.last4,
            "expMonth": self.exp_month,
            "expYear": self.exp_year,
            "isDefault": bool(self.is_default),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<PaymentInstrument id={self.id} account_id={self.account_id} default={self.is_default}>"
