from paysync.extensions import db
from paysync.utils.helpers import isoformat, utcnow

ACTION_SUSPENDED = "suspended"
ACTION_UNSUSPENDED = "unsuspended"
ACTION_BANNED = "banned"
ACTION_UNBANNED = "unbanned"
ACTION_SUBSCRIPTION_CANCELED = "subscription_canceled"
ACTION_SUBSCRIPTION_PAUSED = "subscription_paused"
ACTION_SUBSCRIPTION_RESUMED = "subscription_resumed"
ACTION_PAYMENT_FAILED_LOCK = "payment_failed_lock"
ACTION_PAYMENT_FAILED_RESOLVED = "payment_failed_resolved"
ACTION_TRIAL_REVOKED = "trial_revoked"
ACTION_MANUAL_OVERRIDE = "manual_override"

ACTION_TYPES = (
    ACTION_SUSPENDED, ACTION_UNSUSPENDED,
    ACTION_BANNED, ACTION_UNBANNED,
    ACTION_SUBSCRIPTION_CANCELED, ACTION_SUBSCRIPTION_PAUSED, ACTION_SUBSCRIPTION_RESUMED,
    ACTION_PAYMENT_FAILED_LOCK, ACTION_PAYMENT_FAILED_RESOLVED,
    ACTION_TRIAL_REVOKED, ACTION_MANUAL_OVERRIDE,
)

# These cancel any live subscription immediately (not at period end)
CASCADING_CANCEL_ACTIONS = frozenset({ACTION_TRIAL_REVOKED, ACTION_SUBSCRIPTION_CANCELED, ACTION_BANNED})

class AccountAction(db.Model):
    __tablename__ = "account_actions"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    action_type = db.Column(db.String(40), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)
    performed_by = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "accountId": self.account_id,
            "actionType": self.action_type,
            "reason": self.reason,
            "performedBy": self.performed_by,
            "expiresAt": isoformat(self.expires_at),
            "metadata": self.meta or {},
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<AccountAction id={self.id} account_id={self.account_id} type={self.action_type!r}>"
