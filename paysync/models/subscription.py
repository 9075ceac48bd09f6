from sqlalchemy import func, false, text, UniqueConstraint
from paysync.extensions import db
from paysync.utils.helpers import isoformat

# Provider statuses (taken verbatim from Stripe)
STATUS_TRIALING = "trialing"
STATUS_ACTIVE = "active"
STATUS_PAST_DUE = "past_due"
STATUS_CANCELED = "canceled"
STATUS_INCOMPLETE = "incomplete"
STATUS_INCOMPLETE_EXPIRED = "incomplete_expired"
STATUS_UNPAID = "unpaid"

# A subscription in one of these no longer blocks a new trial
TERMINAL_STATUSES = frozenset({
    STATUS_CANCELED,
    STATUS_INCOMPLETE,
    STATUS_INCOMPLETE_EXPIRED,
    STATUS_UNPAID,
})

# Access is granted while in one of these
ENTITLED_STATUSES = frozenset({STATUS_ACTIVE, STATUS_TRIALING})

class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False, index=True)

    provider_subscription_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    provider_customer_id = db.Column(db.String(64), nullable=False, index=True)
    provider_instrument_id = db.Column(db.String(64), nullable=True)

    plan_key = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(32), nullable=False, index=True, server_default=text("'incomplete'"))
    trial_start = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_end = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False, server_default=false())
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # `created` of the newest webhook applied to this row (ordering guard)
    provider_event_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("account_id", name="uq_subscriptions_account_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_entitled(self) -> bool:
        return self.status in ENTITLED_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "providerSubscriptionId": self.provider_subscription_id,
            "plan": self.plan_key,
            "status": self.status,
            "trialStart": isoformat(self.trial_start),
            "trialEnd": isoformat(self.trial_end),
            "currentPeriodStart": isoformat(self.current_period_start),
            "currentPeriodEnd": isoformat(self.current_period_end),
            "cancelAtPeriodEnd": bool(self.cancel_at_period_end),
            "canceledAt": isoformat(self.canceled_at),
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} account_id={self.account_id} status={self.status!r} plan={self.plan_key!r}>"
