from datetime import datetime, timezone
from flask_login import UserMixin
from sqlalchemy import func, false, CheckConstraint
from paysync.extensions import db, login_manager

# Keep simple text+CHECK for evolvable roles (no DB enum migration pain)
ROLE_CUSTOMER = "customer"
ROLE_BUSINESS = "business"
ROLE_ADMIN = "admin"
ROLE_CHOICES = (ROLE_CUSTOMER, ROLE_BUSINESS, ROLE_ADMIN)

class Account(db.Model, UserMixin):
    __tablename__ = "accounts"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, server_default=ROLE_CUSTOMER)

    # Denormalized mirror of the account_actions projection, for cheap reads
    is_suspended = db.Column(db.Boolean, nullable=False, default=False, server_default=false())
    suspension_reason = db.Column(db.String(255), nullable=True)
    suspended_until = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "role IN ('customer','business','admin')",
            name="ck_accounts_role_valid",
        ),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def suspension_active(self, now: datetime | None = None) -> bool:
        if not self.is_suspended:
            return False
        if self.suspended_until is None:
            return True
        now = now or datetime.now(timezone.utc)
        until = self.suspended_until
        # SQLite hands back naive datetimes
        if until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        return until > now

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<Account id={self.id} email={self.email!r} role={self.role!r}>"

@login_manager.user_loader
def load_account(account_id: str):
    try:
        return db.session.get(Account, int(account_id))
    except (TypeError, ValueError):
        return None
